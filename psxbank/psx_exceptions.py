"""
Exceptions raised while decoding PSF containers and VAB banks.
"""


class PSXSoundError(ValueError):
    """Base class for all decode errors."""

    def __init__(self, message: str):
        super().__init__(message)


class TooSmallError(PSXSoundError):
    """Raised when the input cannot even hold a fixed header."""

    def __init__(self, what: str = 'PSF'):
        super().__init__(f'{what} too small - likely corrupt')


class BadSignatureError(PSXSoundError):
    """Raised when the leading signature bytes do not match."""

    def __init__(self, what: str = 'PSF'):
        super().__init__(f'Invalid {what} signature')


class InconsistentHeaderError(PSXSoundError):
    """Raised when declared section lengths overflow the file."""

    def __init__(self):
        super().__init__('PSF header is inconsistent')


class ChecksumError(PSXSoundError):
    """Raised when the compressed program fails its CRC32 check.

    Args:
        stored: CRC32 read from the header
        computed: CRC32 of the compressed bytes
    """

    def __init__(self, stored: int, computed: int):
        super().__init__('CRC failure - executable data is corrupt')
        self.stored = stored
        self.computed = computed


class DecompressionError(PSXSoundError):
    """Raised when the compressed program cannot be expanded."""

    def __init__(self, message: str = 'Decompression failed'):
        super().__init__(message)


class DataCorruptError(DecompressionError):
    """Raised when the zlib stream is damaged or truncated."""


class SizeMismatchError(DecompressionError):
    """Raised when the stream does not match the requested output size."""


class OutOfMemoryError(PSXSoundError):
    """Raised when a section buffer cannot be allocated."""

    def __init__(self):
        super().__init__('Out of memory reading the file')


class MalformedRegionError(PSXSoundError):
    """Raised when a tone record has an inverted key range.

    Args:
        offset: File offset of the tone record
        key_low: Lowest key of the record
        key_high: Highest key of the record
    """

    def __init__(self, offset: int, key_low: int, key_high: int):
        super().__init__(f'Region @ 0x{offset:08X} has inverted key range '
                         f'({key_low} > {key_high})')
        self.offset = offset
        self.key_low = key_low
        self.key_high = key_high


class StructuralOverflowError(PSXSoundError):
    """Raised when a declared count exceeds the format maximum."""

    def __init__(self, field_name: str, value: int, maximum: int):
        super().__init__(f'{field_name} ({value}) exceeds maximum of {maximum}')
        self.field_name = field_name
        self.value = value
        self.maximum = maximum
