#!/usr/bin/env python3
"""Tests for the PSF container reader and tag parser."""

import os
import struct
import sys
import zlib

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, os.path.dirname(__file__))

import pytest

from bank_fixtures import make_psf
from psx_exceptions import (BadSignatureError, ChecksumError, DataCorruptError,
                            InconsistentHeaderError, SizeMismatchError,
                            TooSmallError)
from psx_base import RawFile
from psf_codec import crc32, decompress
from psf_file import PSFFile, parse_tag_section

EXE = b'PS-X EXE' + bytes(range(256)) * 4


def load(data: bytes) -> PSFFile:
    psf = PSFFile()
    psf.load(RawFile(data))
    return psf


def test_load_and_decompress():
    psf = PSFFile()
    assert psf.load(RawFile(make_psf(EXE, reserved=b'\x01\x02\x03\x04')))
    assert psf.error is None
    assert psf.version == 1
    assert psf.reserved_data == b'\x01\x02\x03\x04'
    assert psf.tags == {}
    assert not psf.is_decompressed

    assert psf.decompress(len(EXE))
    assert psf.exe_data == EXE
    assert psf.exe_size == len(EXE)
    assert psf.is_decompressed

    # Repeatable, larger sizes are zero padded
    assert psf.decompress(len(EXE) + 16)
    assert psf.exe_data == EXE + b'\x00' * 16


def test_stored_crc_matches_compressed_bytes():
    data = make_psf(EXE)
    psf = load(data)
    stored = struct.unpack_from('<I', data, 12)[0]
    assert crc32(psf.exe_comp_data) == stored
    assert zlib.decompress(psf.exe_comp_data) == EXE


def test_decompress_too_small_target_fails():
    psf = load(make_psf(EXE))
    assert not psf.decompress(len(EXE) - 1)
    assert isinstance(psf.last_error, SizeMismatchError)
    assert psf.error.startswith('Decompression failed')
    assert not psf.is_decompressed


def test_decompress_zero_size():
    empty = PSFFile()
    header = b'PSF\x01' + struct.pack('<III', 0, 0, 0)
    assert empty.load(RawFile(header))
    assert empty.decompress(0)

    psf = load(make_psf(EXE))
    assert not psf.decompress(0)


def test_decompress_corrupt_stream():
    comp = b'\x78\x9c' + b'\xff' * 20
    data = b'PSF\x01' + struct.pack('<III', 0, len(comp), crc32(comp)) + comp
    psf = load(data)
    assert psf.error is None
    assert not psf.decompress(0x100)
    assert isinstance(psf.last_error, DataCorruptError)


def test_decompress_trailing_bytes():
    with pytest.raises(SizeMismatchError):
        decompress(zlib.compress(EXE) + b'junk', len(EXE))


def test_too_small():
    psf = load(b'PSF\x01' + b'\x00' * 11)
    assert isinstance(psf.last_error, TooSmallError)
    assert psf.error == 'PSF too small - likely corrupt'


def test_bad_signature():
    data = bytearray(make_psf(EXE))
    data[0:3] = b'PSX'
    psf = load(bytes(data))
    assert isinstance(psf.last_error, BadSignatureError)


def test_any_version_accepted():
    psf = load(make_psf(EXE, version=0x02))
    assert psf.error is None
    assert psf.version == 0x02


@pytest.mark.parametrize('reserved_len, exe_len', [
    (0x1000, 0),
    (0, 0x1000),
    (0x20, 0x20),
    (0xFFFFFFFF, 0),
])
def test_inconsistent_header(reserved_len, exe_len):
    data = b'PSF\x01' + struct.pack('<III', reserved_len, exe_len, 0) + b'\x00' * 0x30
    psf = load(data)
    assert isinstance(psf.last_error, InconsistentHeaderError)
    assert psf.compressed_exe_size == 0


def test_checksum_failure_clears_program():
    psf = load(make_psf(EXE, reserved=b'RSVD', tags=b'[TAG]title=x\n', crc=0x12345678))
    assert isinstance(psf.last_error, ChecksumError)
    assert psf.error == 'CRC failure - executable data is corrupt'
    assert psf.compressed_exe_size == 0
    assert psf.reserved_size == 0
    assert psf.tags == {}
    assert psf.exe_size == 0


def test_load_resets_previous_state():
    psf = load(make_psf(EXE, tags=b'[TAG]title=x\n'))
    assert psf.tags == {'title': 'x'}
    assert not psf.load(RawFile(b'nope'))
    assert psf.tags == {}
    assert psf.compressed_exe_size == 0


def test_tags_from_container():
    tags = b'[TAG]title=Opening\nartist=Someone\n_lib=main.psflib\n_lib2=extra.psflib\n'
    psf = load(make_psf(EXE, tags=tags))
    assert psf.tags['title'] == 'Opening'
    assert psf.tags['artist'] == 'Someone'
    assert psf.library_names() == ['main.psflib', 'extra.psflib']


def test_library_chain_stops_at_gap():
    psf = load(make_psf(EXE, tags=b'[TAG]_lib=a\n_lib3=c\n'))
    assert psf.library_names() == ['a']


def test_tag_section_without_signature_is_ignored():
    psf = load(make_psf(EXE, tags=b'title=Opening\n'))
    assert psf.error is None
    assert psf.tags == {}

    psf = load(make_psf(EXE, tags=b'[TA'))
    assert psf.error is None
    assert psf.tags == {}


def test_multiline_values_merge():
    tags = parse_tag_section(b'comment=line one\ncomment=line two\n')
    assert tags == {'comment': 'line one\nline two'}


def test_non_consecutive_lines_merge_in_file_order():
    tags = parse_tag_section(b'comment=a\ntitle=t\ncomment=b\n')
    assert tags == {'comment': 'a\nb', 'title': 't'}


def test_lines_without_separator_are_ignored():
    tags = parse_tag_section(b'\nthis line has none\n\ntitle=x\n')
    assert tags == {'title': 'x'}


def test_whitespace_and_control_bytes_trimmed():
    assert parse_tag_section(b'  key  =  value  \n') == {'key': 'value'}
    assert parse_tag_section(b'\x01\tkey\x1f=\x7fvalue\r\n') == {'key': '\x7fvalue'}


def test_value_keeps_inner_equals():
    assert parse_tag_section(b'url=a=b\n') == {'url': 'a=b'}


def test_missing_trailing_newline():
    assert parse_tag_section(b'title=a\nartist=b') == {'title': 'a', 'artist': 'b'}


def test_empty_name_still_creates_entry():
    assert parse_tag_section(b'  =value\n') == {'': 'value'}


def test_failed_decompress_drops_previous_program():
    psf = load(make_psf(EXE))
    assert psf.decompress(len(EXE))
    assert not psf.decompress(len(EXE) - 1)
    assert psf.exe_data == b''
    assert psf.exe_size == 0
    assert not psf.is_decompressed


def test_legacy_tags_keep_raw_bytes():
    title = '戦闘'.encode('shift_jis')
    psf = load(make_psf(EXE, tags=b'[TAG]title=' + title + b'\n'))
    assert psf.tags['title'].encode('latin-1') == title
    assert psf.tags['title'].encode('latin-1').decode('shift_jis') == '戦闘'


def test_legacy_tag_encoding_option():
    title = '戦闘'.encode('shift_jis')
    psf = PSFFile(tag_encoding='shift_jis')
    assert psf.load(RawFile(make_psf(EXE, tags=b'[TAG]title=' + title + b'\n')))
    assert psf.tags['title'] == '戦闘'


def test_utf8_tag_selects_utf8():
    title = '戦闘'.encode('utf-8')
    tags = parse_tag_section(b'title=' + title + b'\nutf8=1\n')
    assert tags == {'title': '戦闘', 'utf8': '1'}

    # Same bytes without the marker are left as raw code points
    assert parse_tag_section(b'title=' + title + b'\n')['title'].encode('latin-1') == title
