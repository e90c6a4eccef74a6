"""
PSX format handlers: VAB instrument banks and raw CD-ROM image access.

VAB layout (offsets relative to the bank start):
    0x0000  header (0x20)
    0x0020  program table, always 128 slots of 0x10
    0x0820  tone attribute table, 16 records of 0x20 per materialized program
    ...     VAG pointer table, 256 little-endian words (size / 8)
    ...     VAG sample data
"""

import io
import struct
from typing import Callable, List, NamedTuple, Optional

from psx_exceptions import (MalformedRegionError, PSXSoundError,
                            StructuralOverflowError, TooSmallError)
from psx_base import (VAB_HEADER_SIZE, VAB_MAGIC, VAB_MAX_PROGRAMS,
                      VAB_MAX_TONES, VAB_MAX_VAGS, VAB_PROGRAM_SIZE,
                      VAB_TONE_SIZE, VAB_VAG_POINTER_COUNT,
                      VAB_VAG_POINTER_TABLE_SIZE, ParseLog, RawFile,
                      SampleCollection, SampleLocation)
from psx_envelope import PSXEnvelope, convert_adsr
from psx_samples import PSXSampColl

# Bytes reserved in the tone table for one program (16 tone records)
TONE_BLOCK_SIZE = VAB_TONE_SIZE * 16


class Raw2352FileWrapper(io.BufferedIOBase):
    """File-like view of a raw 2352-byte sector image as 2048-byte ISO data."""

    SECTOR_SIZE = 2352
    DATA_SIZE = 2048
    HEADER_SIZE = 24  # sync pattern + header + subheader

    def __init__(self, filepath: str):
        self.file = open(filepath, 'rb')
        self.file.seek(0, io.SEEK_END)
        self.num_sectors = self.file.tell() // self.SECTOR_SIZE
        self.logical_size = self.num_sectors * self.DATA_SIZE
        self.file.seek(0)
        self.current_pos = 0

    def read(self, size: Optional[int] = -1) -> bytes:  # type: ignore[override]
        """Read logical ISO bytes, skipping sector headers and EDC/ECC."""
        if size is None or size < 0:
            size = self.logical_size - self.current_pos
        size = min(size, self.logical_size - self.current_pos)
        if size <= 0:
            return b''

        result = bytearray()
        while len(result) < size:
            sector_num, offset_in_sector = divmod(self.current_pos, self.DATA_SIZE)
            chunk_size = min(self.DATA_SIZE - offset_in_sector, size - len(result))

            self.file.seek(sector_num * self.SECTOR_SIZE + self.HEADER_SIZE + offset_in_sector)
            chunk = self.file.read(chunk_size)
            result.extend(chunk)
            self.current_pos += len(chunk)

            if len(chunk) < chunk_size:
                break

        return bytes(result)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_SET:
            pos = offset
        elif whence == io.SEEK_CUR:
            pos = self.current_pos + offset
        else:
            pos = self.logical_size + offset
        self.current_pos = max(0, min(pos, self.logical_size))
        return self.current_pos

    def tell(self) -> int:
        return self.current_pos

    def readable(self) -> bool:
        return True

    def close(self):
        if self.file:
            self.file.close()
        super().close()


class VabHeader(NamedTuple):
    """Fixed 0x20-byte VAB header."""

    magic: bytes = VAB_MAGIC
    version: int = 0
    vab_id: int = 0
    total_size: int = 0
    reserved0: int = 0
    num_programs: int = 0
    num_tones: int = 0
    num_vags: int = 0
    master_vol: int = 0
    master_pan: int = 0
    attr1: int = 0
    attr2: int = 0
    reserved1: int = 0

    @classmethod
    def unpack(cls, data: bytes) -> 'VabHeader':
        return cls(*struct.unpack('<4sIIIHHHHBBBBI', data))


class ProgramAttr(NamedTuple):
    """One 0x10-byte program table slot."""

    tones: int = 0
    volume: int = 0
    priority: int = 0
    mode: int = 0
    pan: int = 0
    reserved0: int = 0
    attribute: int = 0
    reserved1: int = 0
    reserved2: int = 0

    @classmethod
    def unpack(cls, data: bytes) -> 'ProgramAttr':
        return cls(*struct.unpack('<6BHII', data))


class ToneAttr(NamedTuple):
    """One 0x20-byte tone attribute record."""

    priority: int = 0
    mode: int = 0
    volume: int = 0
    pan: int = 0
    center_note: int = 0
    fine_tune: int = 0  # signed
    key_low: int = 0
    key_high: int = 0
    vibrato_width: int = 0
    vibrato_time: int = 0
    portamento_width: int = 0
    portamento_time: int = 0
    pitch_bend_min: int = 0
    pitch_bend_max: int = 0
    reserved0: int = 0
    reserved1: int = 0
    adsr1: int = 0
    adsr2: int = 0
    parent_program: int = 0
    vag_num: int = 0
    reserved2: int = 0
    reserved3: int = 0
    reserved4: int = 0
    reserved5: int = 0

    @classmethod
    def unpack(cls, data: bytes) -> 'ToneAttr':
        return cls(*struct.unpack('<5Bb10B8H', data))


class VabRgn:
    """A tone: key range, sample number and playback parameters."""

    def __init__(self, raw_file: RawFile, offset: int, program_num: int,
                 end_offset: Optional[int] = None):
        self.raw_file = raw_file
        self.offset = offset
        self.length = VAB_TONE_SIZE
        self.program_num = program_num  # Owning instrument, see Vab.get_instrument
        self.end_offset = raw_file.size if end_offset is None else end_offset

        self.attr = ToneAttr()
        self.priority = 0
        self.mode = 0
        self.volume = 0.0
        self.pan = 0
        self.unity_key = 0
        self.fine_tune = 0.0
        self.key_low = 0
        self.key_high = 0x7F
        self.adsr1 = 0
        self.adsr2 = 0
        self.samp_num = 0
        self.envelope: Optional[PSXEnvelope] = None

    def load(self, master_vol: int):
        """Decode the tone record.

        Args:
            master_vol: Volume byte of the owning program slot

        Raises:
            MalformedRegionError: key_low > key_high
            TooSmallError: record runs past the scan range
        """
        if self.offset + VAB_TONE_SIZE > min(self.end_offset, self.raw_file.size):
            raise TooSmallError(f"Tone record @ 0x{self.offset:08X}")
        a = ToneAttr.unpack(self.raw_file.get_bytes(self.offset, VAB_TONE_SIZE))
        self.attr = a

        self.priority = a.priority
        self.mode = a.mode
        self.volume = min(1.0, (a.volume * master_vol) / (127.0 * 127.0))
        self.pan = a.pan
        self.unity_key = a.center_note
        self.key_low = a.key_low
        self.key_high = a.key_high
        self.adsr1 = a.adsr1
        self.adsr2 = a.adsr2

        # VAG numbers start at 1
        self.samp_num = max(a.vag_num - 1, 0)

        if self.key_low > self.key_high:
            raise MalformedRegionError(self.offset, self.key_low, self.key_high)

        # Taken as signed, although drivers usually clip it to 0-127
        self.fine_tune = a.fine_tune * 100.0 / 128.0

        self.envelope = convert_adsr(self.adsr1, self.adsr2)


class VabInstr:
    """A program: slot attributes plus its regions."""

    def __init__(self, raw_file: RawFile, offset: int, program_num: int,
                 attr: ProgramAttr, vab_id: int = 0,
                 end_offset: Optional[int] = None):
        self.raw_file = raw_file
        self.offset = offset
        self.length = TONE_BLOCK_SIZE
        self.program_num = program_num
        self.vab_id = vab_id
        self.attr = attr
        self.master_vol = attr.volume
        self.end_offset = raw_file.size if end_offset is None else end_offset
        self.regions: List[VabRgn] = []

    def load(self):
        """Load one region per declared tone.

        Raises:
            PSXSoundError: from the first region that fails
        """
        self.regions = []
        for i in range(self.attr.tones):
            rgn = VabRgn(self.raw_file, self.offset + i * VAB_TONE_SIZE, self.program_num,
                         self.end_offset)
            rgn.load(self.master_vol)
            self.regions.append(rgn)


class Vab:
    """PlayStation VAB instrument bank.

    Args:
        raw_file: Source bytes
        offset: Bank start within raw_file; 0 marks a standalone bank whose
            samples are loaded too
        end_offset: Scan limit (defaults to the end of raw_file)
        log: Parse log for recoverable problems
        sample_collection_factory: Builds the sample consumer for
            standalone banks
    """

    LOG_SOURCE = 'Vab'

    def __init__(self, raw_file: RawFile, offset: int = 0,
                 end_offset: Optional[int] = None,
                 log: Optional[ParseLog] = None,
                 sample_collection_factory: Optional[Callable[..., SampleCollection]] = None):
        self.raw_file = raw_file
        self.offset = offset
        self.end_offset = raw_file.size if end_offset is None else min(end_offset, raw_file.size)
        self.log = log if log is not None else ParseLog()
        self.sample_collection_factory = sample_collection_factory or PSXSampColl

        self.name = 'VAB'
        self.header: Optional[VabHeader] = None
        self.instruments: List[VabInstr] = []
        self.vag_pointer_table_offset: Optional[int] = None
        self.vag_locations: List[SampleLocation] = []
        self.total_vag_size = 0
        self.sample_collection: Optional[SampleCollection] = None
        self.length = 0
        self.last_error: Optional[PSXSoundError] = None

    @property
    def error(self) -> Optional[str]:
        return str(self.last_error) if self.last_error is not None else None

    @property
    def is_root(self) -> bool:
        return self.offset == 0

    def load(self) -> bool:
        """Parse header, program table, VAG pointers and regions.

        Returns:
            False when the header or declared counts are unusable; the
            error is kept in `last_error`.
        """
        self.instruments = []
        self.vag_locations = []
        self.sample_collection = None
        self.last_error = None
        try:
            self.get_header_info()
            self.get_instr_pointers()
        except PSXSoundError as e:
            self.last_error = e
            return False

        self.load_instrs()
        return True

    def get_header_info(self) -> VabHeader:
        if self.end_offset - self.offset < VAB_HEADER_SIZE:
            raise TooSmallError('VAB')

        self.header = VabHeader.unpack(self.raw_file.get_bytes(self.offset, VAB_HEADER_SIZE))
        return self.header

    def get_instr_pointers(self):
        """Walk the program table and materialize instruments.

        Tone blocks are packed: the n-th materialized program owns the
        n-th block, whatever its slot number.
        """
        assert self.header is not None, "header must be read first"

        off_progs = self.offset + VAB_HEADER_SIZE
        off_tone_attrs = off_progs + VAB_PROGRAM_SIZE * VAB_MAX_PROGRAMS

        num_programs = self.header.num_programs
        num_vags = self.header.num_vags

        off_vag_offsets = off_tone_attrs + TONE_BLOCK_SIZE * num_programs

        if num_programs > VAB_MAX_PROGRAMS:
            raise StructuralOverflowError('Number of programs', num_programs, VAB_MAX_PROGRAMS)
        if num_vags > VAB_MAX_VAGS:
            raise StructuralOverflowError('Number of VAGs', num_vags, VAB_MAX_VAGS)

        # Scan every slot regardless of the header count; programs with no
        # tones can sit between used ones
        materialized = 0
        for i in range(VAB_MAX_PROGRAMS):
            off_curr_prog = off_progs + i * VAB_PROGRAM_SIZE
            off_curr_tone_attrs = off_tone_attrs + materialized * TONE_BLOCK_SIZE

            if off_curr_tone_attrs + TONE_BLOCK_SIZE > self.end_offset:
                break

            num_tones = self.raw_file.get_byte(off_curr_prog)
            if num_tones > VAB_MAX_TONES:
                self.log.warn(self.LOG_SOURCE, f"Too many tones ({num_tones}) in Program #{i}.")
            elif num_tones != 0:
                attr = ProgramAttr.unpack(self.raw_file.get_bytes(off_curr_prog, VAB_PROGRAM_SIZE))
                self.instruments.append(
                    VabInstr(self.raw_file, off_curr_tone_attrs, i, attr,
                             self.header.vab_id, self.end_offset))
                materialized += 1

        self.vag_pointer_table_offset = off_vag_offsets
        if off_vag_offsets + VAB_VAG_POINTER_TABLE_SIZE <= self.end_offset:
            self.resolve_vag_locations(off_vag_offsets, num_vags)

    def resolve_vag_locations(self, off_vag_offsets: int, num_vags: int) -> List[SampleLocation]:
        """Turn the size/8 pointer table into sample locations.

        Entry 0 is the start of the first VAG; entries 1..num_vags are VAG
        sizes. Offsets follow the declared sizes even when a VAG is
        dropped for lying past the scan limit.
        """
        entries = struct.unpack_from(f'<{VAB_VAG_POINTER_COUNT}H',
                                     self.raw_file.data, off_vag_offsets)

        vag_start_offset = entries[0] * 8
        total_vag_size = vag_start_offset
        vag_offset = vag_start_offset
        locations = []

        for i in range(num_vags):
            vag_size = entries[i + 1] * 8

            if vag_offset + vag_size <= self.end_offset:
                locations.append(SampleLocation(vag_offset, vag_size))
                total_vag_size += vag_size
            else:
                self.log.warn(self.LOG_SOURCE,
                              f"VAG #{i + 1} pointer (offset=0x{vag_offset:08X}, "
                              f"size={vag_size}) is invalid.")

            vag_offset += vag_size

        self.vag_locations = locations
        self.total_vag_size = total_vag_size
        self.length = off_vag_offsets + VAB_VAG_POINTER_TABLE_SIZE - self.offset

        # Standalone bank: its samples follow the pointer table
        if self.is_root and locations:
            off_vags = off_vag_offsets + VAB_VAG_POINTER_TABLE_SIZE
            samp_coll = self.sample_collection_factory(
                self.raw_file, off_vags, total_vag_size, locations)
            if samp_coll.load():
                self.sample_collection = samp_coll
                for loc in getattr(samp_coll, 'skipped', []):
                    self.log.warn(self.LOG_SOURCE,
                                  f"VAG @ 0x{off_vags + loc.offset:08X} (size={loc.size}) "
                                  f"runs past the end of the file, skipped.")
            else:
                self.log.warn(self.LOG_SOURCE,
                              f"Failed to load {len(locations)} VAGs at 0x{off_vags:08X}.")

        return locations

    def load_instrs(self):
        """Load regions; a program with a bad region is dropped and logged."""
        loaded = []
        for instr in self.instruments:
            try:
                instr.load()
            except PSXSoundError as e:
                self.log.error(self.LOG_SOURCE, f"Program #{instr.program_num} dropped: {e}")
                continue
            loaded.append(instr)
        self.instruments = loaded

    def get_instrument(self, program_num: int) -> Optional[VabInstr]:
        """Look up an instrument by program slot number."""
        for instr in self.instruments:
            if instr.program_num == program_num:
                return instr
        return None

    @property
    def num_regions(self) -> int:
        return sum(len(instr.regions) for instr in self.instruments)


def find_vab_offsets(data: bytes, start: int = 0) -> List[int]:
    """Find word-aligned 'pBAV' headers with plausible program/VAG counts."""
    offsets = []
    pos = data.find(VAB_MAGIC, start)
    while pos >= 0:
        if pos % 4 == 0 and pos + VAB_HEADER_SIZE <= len(data):
            header = VabHeader.unpack(data[pos:pos + VAB_HEADER_SIZE])
            if header.num_programs <= VAB_MAX_PROGRAMS and header.num_vags <= VAB_MAX_VAGS:
                offsets.append(pos)
        pos = data.find(VAB_MAGIC, pos + 1)
    return offsets
