"""
CRC32 and zlib decompression for the PSF compressed program section.
"""

import zlib

from psx_exceptions import DataCorruptError, SizeMismatchError


def crc32(data: bytes) -> int:
    """CRC32 as stored in the PSF header (unsigned 32-bit)."""
    return zlib.crc32(data) & 0xFFFFFFFF


def decompress(data: bytes, expected_size: int) -> bytes:
    """Inflate a zlib stream into exactly `expected_size` bytes.

    Output shorter than `expected_size` is zero padded. The stream must
    end inside `data` and must not produce more than `expected_size`
    bytes.

    Raises:
        DataCorruptError: stream is damaged or truncated
        SizeMismatchError: stream is longer than expected, or trailing
            bytes follow the end of the stream
    """
    if expected_size <= 0:
        if data:
            raise SizeMismatchError('Decompression failed - mismatched length')
        return b''

    inflater = zlib.decompressobj()
    try:
        out = inflater.decompress(data, expected_size)
        if not inflater.eof:
            # Output limit hit: the rest of the input must not yield more data
            if inflater.decompress(inflater.unconsumed_tail, 1):
                raise SizeMismatchError(
                    f'Decompression failed - output exceeds {expected_size} bytes')
            if not inflater.eof:
                raise DataCorruptError('Decompression failed - truncated stream')
    except zlib.error as e:
        raise DataCorruptError(f'Decompression failed - {e}') from e

    if inflater.unused_data:
        raise SizeMismatchError(
            f'Decompression failed - {len(inflater.unused_data)} bytes after end of stream')

    return out.ljust(expected_size, b'\x00')
