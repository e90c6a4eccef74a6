"""Builders for synthetic VAB and PSF images used by the tests."""

import struct
import zlib
from typing import Dict, List, Optional


def make_tone(key_low=0, key_high=127, volume=127, pan=64, center=60,
              fine_tune=0, adsr1=0x000F, adsr2=0x1FC0, vag=1,
              priority=8, mode=0) -> bytes:
    """One 0x20-byte tone attribute record."""
    return struct.pack('<5Bb10B8H',
                       priority, mode, volume, pan, center, fine_tune,
                       key_low, key_high,
                       0, 0, 0, 0, 0, 0, 0, 0,
                       adsr1, adsr2, 0, vag, 0, 0, 0, 0)


def make_program(tones: int, volume=127, priority=8, mode=0, pan=64, attribute=0) -> bytes:
    """One 0x10-byte program slot."""
    return struct.pack('<6BHII', tones, volume, priority, mode, pan, 0, attribute, 0, 0)


def make_vab(programs: Dict[int, List[bytes]],
             tone_counts: Optional[Dict[int, int]] = None,
             num_programs: Optional[int] = None,
             num_vags: int = 0,
             vag_entries: Optional[List[int]] = None,
             sample_data: bytes = b'',
             program_volume: int = 127,
             include_vag_table: bool = True) -> bytes:
    """Build a VAB image.

    Args:
        programs: slot -> tone records; tone blocks are packed in slot order
        tone_counts: overrides the tone count written to a slot
        num_programs: declared program count (defaults to blocks written)
        num_vags: declared VAG count
        vag_entries: VAG pointer table words (size / 8), padded to 256
        sample_data: bytes following the pointer table
    """
    tone_counts = tone_counts or {}
    slots = bytearray(0x10 * 128)
    tone_table = bytearray()
    blocks = 0

    for slot in sorted(programs):
        tones = programs[slot]
        count = tone_counts.get(slot, len(tones))
        slots[slot * 0x10:(slot + 1) * 0x10] = make_program(count, volume=program_volume)
        if 0 < count <= 32:
            tone_table += b''.join(tones).ljust(0x200, b'\x00')
            blocks += 1

    if num_programs is None:
        num_programs = blocks
    tone_table = tone_table.ljust(0x200 * num_programs, b'\x00')

    total_tones = sum(len(t) for t in programs.values())
    header = struct.pack('<4sIIIHHHHBBBBI', b'pBAV', 7, 0, 0, 0,
                         num_programs, total_tones, num_vags, 127, 64, 0, 0, 0)

    data = header + bytes(slots) + bytes(tone_table)
    if include_vag_table:
        entries = list(vag_entries or [])
        entries += [0] * (256 - len(entries))
        data += struct.pack('<256H', *entries)
    return data + sample_data


def make_psf(exe: bytes, reserved: bytes = b'', tags: bytes = b'',
             version: int = 1, crc: Optional[int] = None) -> bytes:
    """Build a PSF container around a zlib-compressed program."""
    comp = zlib.compress(exe)
    if crc is None:
        crc = zlib.crc32(comp) & 0xFFFFFFFF
    header = b'PSF' + bytes([version]) + struct.pack('<III', len(reserved), len(comp), crc)
    return header + reserved + comp + tags


def make_adpcm_block(nibble: int, shift: int = 0, filt: int = 0, flags: int = 0) -> bytes:
    """16-byte ADPCM block with every nibble set to `nibble`."""
    byte = (nibble & 0x0F) | ((nibble & 0x0F) << 4)
    return bytes([(filt << 4) | shift, flags]) + bytes([byte]) * 14
