"""
PSF (Portable Sound Format) container reader.

Layout:
    0x00  'PSF' + version byte
    0x04  reserved section length
    0x08  compressed program length
    0x0C  CRC32 of the compressed program
    0x10  reserved section, compressed program, optional [TAG] section
"""

from typing import Dict, List, Optional

from psx_exceptions import (BadSignatureError, ChecksumError, DecompressionError,
                            InconsistentHeaderError, OutOfMemoryError,
                            PSXSoundError, TooSmallError)
from psx_base import (PSF_HEADER_SIZE, PSF_SIG, PSF_TAG_SIG,
                      PSF_TAG_SIG_LEN, RawFile)
from psf_codec import crc32, decompress


def _trim(field: bytes) -> bytes:
    """Strip bytes 0x00-0x20 from both ends."""
    start = 0
    end = len(field)
    while end > start and field[end - 1] <= 0x20:
        end -= 1
    while start < end and field[start] <= 0x20:
        start += 1
    return field[start:end]


def parse_tag_section(section: bytes, legacy_encoding: str = 'latin-1') -> Dict[str, str]:
    """Parse the body of a [TAG] section into a name -> value mapping.

    Lines end at LF (the last line may lack one). Lines without '=' are
    ignored. Names and values are trimmed of every byte <= 0x20, and a
    repeated name appends its value to the existing one after a newline.

    Text is UTF-8 only when the section carries a `utf8` tag. Otherwise it
    is in whatever code page the ripper used (often Shift-JIS), so it is
    decoded with `legacy_encoding`; the latin-1 default keeps every byte,
    and `value.encode('latin-1')` gives the raw tag back.

    Args:
        section: Tag bytes following the '[TAG]' signature
        legacy_encoding: Codec for sections without a `utf8` tag

    Returns:
        Dict of tag name to value
    """
    raw_tags: Dict[bytes, bytes] = {}
    pos = 0
    size = len(section)

    while pos < size:
        line_end = section.find(b'\n', pos)
        if line_end < 0:
            line_end = size

        line = section[pos:line_end]
        pos = line_end + 1

        sep = line.find(b'=')
        if sep < 0:
            continue

        name = _trim(line[:sep])
        value = _trim(line[sep + 1:])

        # Multi-line values repeat the same name on several lines
        if name in raw_tags:
            raw_tags[name] += b'\n' + value
        else:
            raw_tags[name] = value

    encoding = 'utf-8' if b'utf8' in raw_tags else legacy_encoding

    return {name.decode(encoding, 'replace'): value.decode(encoding, 'replace')
            for name, value in raw_tags.items()}


class PSFFile:
    """A PSF container: reserved area, compressed program and tags."""

    def __init__(self, raw_file: Optional[RawFile] = None, tag_encoding: str = 'latin-1'):
        self.tag_encoding = tag_encoding
        self.clear()
        if raw_file is not None:
            self.load(raw_file)

    def clear(self):
        """Reset every section and field to the empty state."""
        self.version = 0
        self.reserved_data = b''
        self.exe_comp_data = b''
        self.exe_data = b''
        self.exe_crc = 0
        self.tags: Dict[str, str] = {}
        self.decompressed = False
        self.last_error: Optional[PSXSoundError] = None

    @property
    def error(self) -> Optional[str]:
        """Description of the last failure, or None."""
        return str(self.last_error) if self.last_error is not None else None

    def load(self, raw_file: RawFile) -> bool:
        """Validate and read a PSF container.

        Returns:
            True on success. On failure the error is kept in `last_error`
            and no section is reported as loaded.
        """
        self.clear()
        try:
            self._load(raw_file)
        except PSXSoundError as e:
            self.last_error = e
            return False
        except MemoryError:
            self.exe_comp_data = b''
            self.reserved_data = b''
            self.last_error = OutOfMemoryError()
            return False
        return True

    def _load(self, raw_file: RawFile):
        file_size = raw_file.size
        if file_size < PSF_HEADER_SIZE:
            raise TooSmallError('PSF')

        sig = raw_file.get_bytes(0, 4)
        if sig[:3] != PSF_SIG:
            raise BadSignatureError('PSF')
        self.version = sig[3]

        reserved_size = raw_file.get_word(4)
        exe_size = raw_file.get_word(8)
        self.exe_crc = raw_file.get_word(12)

        if (reserved_size > file_size or
                exe_size > file_size or
                PSF_HEADER_SIZE + reserved_size + exe_size > file_size):
            raise InconsistentHeaderError()

        exe_offset = PSF_HEADER_SIZE + reserved_size
        self.exe_comp_data = raw_file.get_bytes(exe_offset, exe_size)

        computed = crc32(self.exe_comp_data)
        if computed != self.exe_crc:
            self.exe_comp_data = b''
            raise ChecksumError(self.exe_crc, computed)

        self.reserved_data = raw_file.get_bytes(PSF_HEADER_SIZE, reserved_size)

        tag_offset = exe_offset + exe_size
        tag_size = file_size - tag_offset
        if tag_size >= PSF_TAG_SIG_LEN:
            tag_section = raw_file.get_bytes(tag_offset, tag_size)
            if tag_section[:PSF_TAG_SIG_LEN] == PSF_TAG_SIG:
                self.tags = parse_tag_section(tag_section[PSF_TAG_SIG_LEN:],
                                              self.tag_encoding)

    def decompress(self, decompressed_size: int) -> bool:
        """Inflate the compressed program into `exe_data`.

        Can be called again with another size. A size of 0 succeeds only
        for an empty compressed section. A failed call leaves no program
        data behind.
        """
        self.exe_data = b''
        self.decompressed = False
        try:
            self.exe_data = decompress(self.exe_comp_data, decompressed_size)
        except DecompressionError as e:
            self.last_error = e
            return False
        except MemoryError:
            self.last_error = OutOfMemoryError()
            return False

        self.decompressed = decompressed_size > 0
        return True

    @property
    def is_decompressed(self) -> bool:
        return self.decompressed

    @property
    def exe_size(self) -> int:
        return len(self.exe_data)

    @property
    def compressed_exe_size(self) -> int:
        return len(self.exe_comp_data)

    @property
    def reserved_size(self) -> int:
        return len(self.reserved_data)

    def library_names(self) -> List[str]:
        """Return the minipsf library chain: _lib, _lib2, _lib3, ...

        Numbered entries stop at the first missing number.
        """
        libs = []
        if '_lib' in self.tags:
            libs.append(self.tags['_lib'])
        n = 2
        while f'_lib{n}' in self.tags:
            libs.append(self.tags[f'_lib{n}'])
            n += 1
        return libs
