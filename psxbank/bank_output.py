"""
Output generation for decoded VAB banks and PSF containers.

Generates text dumps, JSON-ready dicts and WAV files from parsed data.
"""

import sys
import wave
from array import array
from pathlib import Path
from typing import Dict, List

from psx_base import note_name
from format_psx import Vab
from psf_file import PSFFile
from psx_samples import VagSample


def _fmt_time(seconds) -> str:
    return "never" if seconds is None else f"{seconds:.4f}s"


def dump_bank_to_text(bank: Vab, name: str = '') -> str:
    """Generate a text listing of a parsed VAB.

    Args:
        bank: Loaded Vab
        name: Label for the first line (defaults to the bank name)

    Returns:
        Formatted text
    """
    output = []
    hdr = bank.header
    output.append(f"{name or bank.name} @ {bank.offset:08X}")

    if hdr is None:
        output.append("  [No header]")
        return '\n'.join(output)

    output.append(f"Magic:       {hdr.magic.decode('latin-1')}")
    output.append(f"Version:     {hdr.version}")
    output.append(f"VAB ID:      {hdr.vab_id}")
    output.append(f"Total size:  {hdr.total_size:08X}")
    output.append(f"Programs:    {hdr.num_programs}")
    output.append(f"Tones:       {hdr.num_tones}")
    output.append(f"VAGs:        {hdr.num_vags}")
    output.append(f"Master vol:  {hdr.master_vol}")
    output.append(f"Master pan:  {hdr.master_pan}")
    output.append("")

    for instr in bank.instruments:
        a = instr.attr
        output.append(f"Program {instr.program_num:3d} @ {instr.offset:08X}  "
                      f"tones {a.tones:2d}  vol {a.volume:3d}  pri {a.priority:2d}  "
                      f"mode {a.mode:02X}  pan {a.pan:3d}  attr {a.attribute:04X}")
        for i, rgn in enumerate(instr.regions):
            env = rgn.envelope
            output.append(
                f"    Tone {i:2d}: keys {note_name(rgn.key_low)}-{note_name(rgn.key_high)}  "
                f"unity {note_name(rgn.unity_key)}  tune {rgn.fine_tune:+7.2f}c  "
                f"vol {rgn.volume:.3f}  pan {rgn.pan:3d}  VAG {rgn.samp_num:3d}  "
                f"ADSR {rgn.adsr1:04X}:{rgn.adsr2:04X}")
            if env is not None:
                output.append(
                    f"             A {_fmt_time(env.attack_time)}  D {_fmt_time(env.decay_time)}  "
                    f"S {env.sustain_level:.3f}/{_fmt_time(env.sustain_time)}  "
                    f"R {_fmt_time(env.release_time)}")
    output.append("")

    if bank.vag_pointer_table_offset is not None:
        output.append(f"VAG pointer table @ {bank.vag_pointer_table_offset:08X}")
    for i, loc in enumerate(bank.vag_locations):
        output.append(f"  VAG {i:3d}: offset {loc.offset:08X}  size {loc.size:6d}")
    output.append(f"  Total VAG size: {bank.total_vag_size}")

    return '\n'.join(output)


def bank_to_dict(bank: Vab) -> Dict:
    """Convert a parsed VAB into plain types for JSON output."""
    hdr = bank.header
    header = {}
    if hdr is not None:
        header = hdr._asdict()
        header['magic'] = hdr.magic.decode('latin-1')

    instruments = []
    for instr in bank.instruments:
        regions = []
        for rgn in instr.regions:
            env = rgn.envelope
            regions.append({
                'offset': rgn.offset,
                'priority': rgn.priority,
                'mode': rgn.mode,
                'volume': rgn.volume,
                'pan': rgn.pan,
                'unity_key': rgn.unity_key,
                'fine_tune': rgn.fine_tune,
                'key_low': rgn.key_low,
                'key_high': rgn.key_high,
                'adsr1': rgn.adsr1,
                'adsr2': rgn.adsr2,
                'sample': rgn.samp_num,
                'envelope': None if env is None else {
                    'attack_time': env.attack_time,
                    'decay_time': env.decay_time,
                    'sustain_level': env.sustain_level,
                    'sustain_time': env.sustain_time,
                    'release_time': env.release_time,
                },
            })
        instruments.append({
            'program': instr.program_num,
            'offset': instr.offset,
            'attributes': instr.attr._asdict(),
            'regions': regions,
        })

    samples = []
    coll = bank.sample_collection
    for i, loc in enumerate(bank.vag_locations):
        entry = {'offset': loc.offset, 'size': loc.size}
        sample = None
        if coll is not None and i < len(getattr(coll, 'samples', [])):
            sample = coll.samples[i]
        if sample is not None:
            entry.update({'frames': len(sample), 'loop_start': sample.loop_start,
                          'loop_end': sample.loop_end})
        samples.append(entry)

    return {
        'name': bank.name,
        'offset': bank.offset,
        'length': bank.length,
        'header': header,
        'instruments': instruments,
        'samples': samples,
        'total_sample_size': bank.total_vag_size,
        'log': [str(item) for item in bank.log.items],
    }


def dump_psf_tags_to_text(psf: PSFFile, name: str = '') -> str:
    """List a PSF's header fields and tags."""
    output = [f"PSF {name}".rstrip()]
    output.append(f"  Version:         {psf.version:02X}")
    output.append(f"  Reserved size:   {psf.reserved_size}")
    output.append(f"  Compressed size: {psf.compressed_exe_size}")
    output.append(f"  CRC32:           {psf.exe_crc:08X}")
    if psf.is_decompressed:
        output.append(f"  Program size:    {psf.exe_size}")
    libs = psf.library_names()
    if libs:
        output.append(f"  Libraries:       {', '.join(libs)}")
    output.append("")
    for tag_name in sorted(psf.tags):
        lines: List[str] = psf.tags[tag_name].split('\n')
        output.append(f"  {tag_name}={lines[0]}")
        for line in lines[1:]:
            output.append(f"  {' ' * len(tag_name)} {line}")
    return '\n'.join(output)


def write_sample_wav(sample: VagSample, output_path: Path, sample_rate: int = 44100):
    """Write a decoded VAG as mono 16-bit WAV."""
    frames = array('h', sample.pcm)
    if sys.byteorder == 'big':
        frames.byteswap()

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with wave.open(str(output_path), 'wb') as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(2)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(frames.tobytes())
