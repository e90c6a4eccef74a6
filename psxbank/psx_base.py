"""
Base classes and shared utilities for PlayStation sound format handlers.
"""

import struct
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Union


# Global constants
NOTE_NAMES = ["C ", "C#", "D ", "D#", "E ", "F ", "F#",
              "G ", "G#", "A ", "A#", "B "]

# PSF container layout
PSF_SIG = b'PSF'
PSF_HEADER_SIZE = 0x10
PSF_TAG_SIG = b'[TAG]'
PSF_TAG_SIG_LEN = 5
PSF_VERSION_PSX = 0x01

# PS-X EXE header (0x800) plus 2MB of main RAM
DEFAULT_PSX_EXE_SIZE = 0x200800

# VAB bank layout
VAB_MAGIC = b'pBAV'
VAB_HEADER_SIZE = 0x20
VAB_PROGRAM_SIZE = 0x10
VAB_MAX_PROGRAMS = 128
VAB_TONE_SIZE = 0x20
VAB_MAX_TONES = 32
VAB_MAX_VAGS = 255
VAB_VAG_POINTER_COUNT = 256
VAB_VAG_POINTER_TABLE_SIZE = 2 * VAB_VAG_POINTER_COUNT


def note_name(note: int) -> str:
    """Format a MIDI note number as name + octave (60 -> 'C 4')."""
    return f"{NOTE_NAMES[note % 12]}{note // 12 - 1}"


def parse_int(value: Union[str, int]) -> int:
    """Convert YAML config value to int (handles '0xAA', '170', etc)."""
    return int(value, 0) if isinstance(value, str) else value


class RawFile:
    """Random-access view of a byte buffer with little-endian readers.

    Callers are expected to bounds-check before reading; out-of-range
    reads raise struct.error / IndexError like the underlying buffer.
    """

    def __init__(self, data: bytes, name: str = ''):
        self.data = bytes(data)
        self.name = name

    @classmethod
    def from_path(cls, path) -> 'RawFile':
        """Read a whole file from disk."""
        with open(path, 'rb') as f:
            return cls(f.read(), name=str(path))

    @property
    def size(self) -> int:
        return len(self.data)

    def __len__(self) -> int:
        return len(self.data)

    def get_byte(self, offset: int) -> int:
        return self.data[offset]

    def get_short(self, offset: int) -> int:
        return struct.unpack_from('<H', self.data, offset)[0]

    def get_word(self, offset: int) -> int:
        return struct.unpack_from('<I', self.data, offset)[0]

    def get_bytes(self, offset: int, length: int) -> bytes:
        return self.data[offset:offset + length]


class LogLevel(Enum):
    """Severity of a parse log item."""
    DEBUG = "debug"
    INFO = "info"
    WARN = "warning"
    ERR = "error"


@dataclass
class LogItem:
    """A single message emitted while parsing."""
    text: str
    level: LogLevel = LogLevel.WARN
    source: str = ''

    def __str__(self) -> str:
        return f"{self.level.value.upper()}: [{self.source}] {self.text}"


class ParseLog:
    """Collects log items for one decode and echoes them to stderr.

    One instance is handed to each parser; it never raises back into
    the parse.
    """

    def __init__(self, echo: bool = True, min_echo_level: LogLevel = LogLevel.WARN):
        self.items: List[LogItem] = []
        self.echo = echo
        self.min_echo_level = min_echo_level

    def add_log_item(self, item: LogItem):
        self.items.append(item)
        if self.echo and _LEVEL_ORDER[item.level] >= _LEVEL_ORDER[self.min_echo_level]:
            print(str(item), file=sys.stderr)

    def warn(self, source: str, text: str):
        self.add_log_item(LogItem(text, LogLevel.WARN, source))

    def error(self, source: str, text: str):
        self.add_log_item(LogItem(text, LogLevel.ERR, source))

    def warnings(self) -> List[LogItem]:
        """Return items at warning level or above."""
        return [item for item in self.items
                if _LEVEL_ORDER[item.level] >= _LEVEL_ORDER[LogLevel.WARN]]

    def __len__(self) -> int:
        return len(self.items)


_LEVEL_ORDER = {LogLevel.DEBUG: 0, LogLevel.INFO: 1, LogLevel.WARN: 2, LogLevel.ERR: 3}


@dataclass(frozen=True)
class SampleLocation:
    """Byte offset and size of one VAG within a sample region."""
    offset: int
    size: int


class SampleCollection(ABC):
    """Consumer of resolved sample locations.

    Receives the locations relative to `offset` plus the total span of
    the sample region, and reports whether loading succeeded.
    """

    def __init__(self, raw_file: RawFile, offset: int, total_size: int,
                 locations: List[SampleLocation]):
        self.raw_file = raw_file
        self.offset = offset
        self.total_size = total_size
        self.locations = list(locations)

    @abstractmethod
    def load(self) -> bool:
        """Load the samples; return False on failure."""
        pass


@dataclass
class BankFileEntry:
    """One input file listed in the extraction config."""
    path: str
    name: Optional[str] = None
    exe_size: Optional[int] = None
    offset: int = 0

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        return self.path.replace('\\', '/').rstrip('/').split('/')[-1].split(';')[0]
