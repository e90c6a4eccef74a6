"""
VAG sample collection: slices the sample region of a VAB and decodes
PlayStation ADPCM to signed 16-bit PCM.
"""

from array import array
from dataclasses import dataclass, field
from typing import List, Optional

from psx_base import RawFile, SampleCollection, SampleLocation

# ADPCM prediction filter coefficients (in 1/64 units)
K0 = [0, 60, 115, 98, 122]
K1 = [0, 0, -52, -55, -60]

ADPCM_BLOCK_SIZE = 16
SAMPLES_PER_BLOCK = 28

FLAG_END = 0x01
FLAG_REPEAT = 0x02
FLAG_LOOP_START = 0x04


def _clamp16(value: int) -> int:
    return max(-32768, min(32767, value))


@dataclass
class VagSample:
    """A decoded VAG."""
    offset: int  # Relative to the sample region
    size: int
    pcm: array = field(default_factory=lambda: array('h'))
    loop_start: Optional[int] = None
    loop_end: Optional[int] = None

    @property
    def loops(self) -> bool:
        return self.loop_start is not None and self.loop_end is not None

    def __len__(self) -> int:
        return len(self.pcm)


def decode_vag(data: bytes) -> VagSample:
    """Decode PSX ADPCM blocks until the end flag or the end of data.

    Loop start is the first block flagged LOOP_START; a loop end is set
    only when the final block carries REPEAT.
    """
    sample = VagSample(offset=0, size=len(data))
    hist1 = 0
    hist2 = 0

    for pos in range(0, len(data) - ADPCM_BLOCK_SIZE + 1, ADPCM_BLOCK_SIZE):
        block = data[pos:pos + ADPCM_BLOCK_SIZE]
        header = block[0]
        flags = block[1]

        shift = header & 0x0F
        if shift > 12:
            shift = 9
        filt = (header >> 4) & 0x07
        if filt > 4:
            filt = 0
        k0 = K0[filt]
        k1 = K1[filt]

        if flags & FLAG_LOOP_START and sample.loop_start is None:
            sample.loop_start = len(sample.pcm)

        for byte in block[2:]:
            for nibble_shift in (0, 4):
                nib = (byte >> nibble_shift) & 0x0F
                if nib >= 8:
                    nib -= 16
                value = (nib << 12) >> shift
                value += (hist1 * k0 + hist2 * k1) >> 6
                value = _clamp16(value)
                hist2 = hist1
                hist1 = value
                sample.pcm.append(value)

        if flags & FLAG_END:
            if flags & FLAG_REPEAT and sample.loop_start is not None:
                sample.loop_end = len(sample.pcm)
            break

    return sample


class PSXSampColl(SampleCollection):
    """Sample collection for the VAG region that follows a VAB's pointer table."""

    def __init__(self, raw_file: RawFile, offset: int, total_size: int,
                 locations: List[SampleLocation]):
        super().__init__(raw_file, offset, total_size, locations)
        # One entry per location; None where the VAG was skipped
        self.samples: List[Optional[VagSample]] = []
        self.skipped: List[SampleLocation] = []

    def load(self) -> bool:
        """Decode every location that lies inside the source.

        VAGs cut off by the end of the source are skipped and listed in
        `skipped`. Fails only when none of the locations can be read.
        """
        self.samples = []
        self.skipped = []
        for loc in self.locations:
            start = self.offset + loc.offset
            if start + loc.size > self.raw_file.size:
                self.samples.append(None)
                self.skipped.append(loc)
                continue

            sample = decode_vag(self.raw_file.get_bytes(start, loc.size))
            sample.offset = loc.offset
            self.samples.append(sample)

        return len(self.skipped) < len(self.locations) or not self.locations
