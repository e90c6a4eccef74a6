"""
Bank extraction orchestrator.
Handles directory/ISO loading, PSF unpacking, VAB parsing and batch output.
"""

import json
import os
import traceback
from io import BytesIO
from pathlib import Path
from typing import List, Optional, Tuple

import pycdlib.pycdlib as pycdlib_module
import yaml

from psx_base import (DEFAULT_PSX_EXE_SIZE, PSF_SIG, BankFileEntry,
                      ParseLog, RawFile, parse_int)
from format_psx import Raw2352FileWrapper, Vab, find_vab_offsets
from bank_output import (bank_to_dict, dump_bank_to_text,
                         dump_psf_tags_to_text, write_sample_wav)
from psf_file import PSFFile

BANK_SUFFIXES = ('.vab', '.psf', '.minipsf', '.psflib')


class BankExtractor:
    """Main extractor class."""

    def __init__(self, config_path: str, source_file: str):
        """Initialize with YAML config file and a source directory or disc image."""
        with open(config_path, 'r') as f:
            self.config = yaml.safe_load(f) or {}

        self.source_file = source_file
        self.output_dir = Path(self.config.get('output_dir', 'output'))
        self.psf_exe_size = parse_int(self.config.get('psf_exe_size', DEFAULT_PSX_EXE_SIZE))
        self.sample_rate = int(self.config.get('sample_rate', 44100))
        self.write_samples = bool(self.config.get('write_samples', True))
        self.write_json = bool(self.config.get('write_json', True))
        self.tag_encoding = self.config.get('tag_encoding', 'latin-1')

        self.iso: Optional[pycdlib_module.PyCdlib] = None
        self.sector_size: Optional[int] = None
        self._raw_wrapper: Optional[Raw2352FileWrapper] = None

        if Path(source_file).is_dir():
            self.source_dir: Optional[Path] = Path(source_file)
        else:
            self.source_dir = None
            if 'sector_size' in self.config:
                self.sector_size = self.config['sector_size']
            else:
                self.sector_size = self._detect_sector_size()
                print(f"Detected sector size: {self.sector_size} bytes")

            self.iso = pycdlib_module.PyCdlib()
            if self.sector_size == 2352:
                print("Opening raw CD-ROM image with on-the-fly conversion...")
                self._raw_wrapper = Raw2352FileWrapper(source_file)
                self.iso.open_fp(self._raw_wrapper)
            else:
                self.iso.open(source_file)

    def _detect_sector_size(self) -> int:
        """Heuristically detect CD-ROM sector size (2048 or 2352 bytes)."""
        file_size = os.path.getsize(self.source_file)
        if file_size % 2352 == 0:
            return 2352
        elif file_size % 2048 == 0:
            return 2048
        print(f"Warning: File size {file_size} not evenly divisible by 2048 or 2352, defaulting to 2352")
        return 2352

    @staticmethod
    def _normalize_iso_path(iso_path: str) -> str:
        """pycdlib wants '/UPPER/CASE.EXT;1' paths."""
        iso_path = iso_path.replace('\\', '/')
        if not iso_path.startswith('/'):
            iso_path = '/' + iso_path
        iso_path = iso_path.upper()
        if ';' not in iso_path:
            iso_path += ';1'
        return iso_path

    def _read_file_from_iso(self, iso_path: str) -> bytes:
        """Read a file from the ISO image using pycdlib."""
        assert self.iso is not None, "ISO must be loaded for ISO file access"

        iso_path_upper = self._normalize_iso_path(iso_path)
        output = BytesIO()
        try:
            self.iso.get_file_from_iso_fp(output, iso_path=iso_path_upper)
        except Exception as e:
            raise ValueError(f"Could not find path {iso_path_upper} in ISO: {e}") from e
        return output.getvalue()

    def read_source_file(self, entry: BankFileEntry) -> bytes:
        """Read one configured file from the directory or disc image."""
        if self.source_dir is not None:
            path = self.source_dir / entry.path
            if not path.exists():
                raise FileNotFoundError(f"Bank file not found: {path}")
            return path.read_bytes()
        return self._read_file_from_iso(entry.path)

    def list_entries(self) -> List[BankFileEntry]:
        """Configured files, or every bank-like file in the source."""
        if 'files' in self.config:
            entries = []
            for f in self.config['files']:
                if isinstance(f, str):
                    f = {'path': f}
                f = dict(f)
                if f.get('exe_size') is not None:
                    f['exe_size'] = parse_int(f['exe_size'])
                f['offset'] = parse_int(f.get('offset') or 0)
                entries.append(BankFileEntry(**f))
            return entries

        if self.source_dir is not None:
            return [BankFileEntry(path=str(p.relative_to(self.source_dir)))
                    for p in sorted(self.source_dir.rglob('*'))
                    if p.is_file() and p.suffix.lower() in BANK_SUFFIXES]

        assert self.iso is not None
        entries = []
        for dirname, _dirlist, filelist in self.iso.walk(iso_path='/'):
            for filename in filelist:
                base = filename.split(';')[0]
                if os.path.splitext(base)[1].lower() in BANK_SUFFIXES:
                    entries.append(BankFileEntry(path=f"{dirname.rstrip('/')}/{filename}"))
        return entries

    def load_psf(self, entry: BankFileEntry, data: bytes) -> PSFFile:
        """Validate a PSF and decompress its program."""
        psf = PSFFile(tag_encoding=self.tag_encoding)
        if not psf.load(RawFile(data, name=entry.path)):
            raise ValueError(psf.error)
        exe_size = entry.exe_size if entry.exe_size is not None else self.psf_exe_size
        if psf.compressed_exe_size and not psf.decompress(exe_size):
            raise ValueError(psf.error)
        return psf

    def load_banks(self, entry: BankFileEntry, data: bytes,
                   log: ParseLog) -> Tuple[Optional[PSFFile], List[Vab]]:
        """Parse every VAB in a file.

        A PSF's program image is scanned for embedded banks; anything else
        is taken as a VAB at the configured offset.
        """
        psf = None
        banks = []
        if data[:3] == PSF_SIG:
            psf = self.load_psf(entry, data)
            exe = RawFile(psf.exe_data, name=entry.path)
            for offset in find_vab_offsets(psf.exe_data):
                bank = Vab(exe, offset, log=log)
                if bank.load():
                    banks.append(bank)
                else:
                    log.warn('Vab', f"VAB @ {offset:08X} skipped: {bank.error}")
        else:
            bank = Vab(RawFile(data, name=entry.path), entry.offset, log=log)
            if not bank.load():
                raise ValueError(bank.error)
            banks.append(bank)
        return psf, banks

    def write_outputs(self, filename: str, psf: Optional[PSFFile], banks: List[Vab]) -> List[Path]:
        """Write text, JSON and WAV output for one input file."""
        text_dir = self.output_dir / 'txt'
        json_dir = self.output_dir / 'json'
        wav_dir = self.output_dir / 'wav'
        text_dir.mkdir(parents=True, exist_ok=True)

        written = []
        text_output = []
        if psf is not None:
            text_output.append(dump_psf_tags_to_text(psf, filename))
            text_output.append("")
        for i, bank in enumerate(banks):
            text_output.append(dump_bank_to_text(bank, f"{filename} VAB {i}"))
            text_output.append("")

        text_file = text_dir / f"{filename}.txt"
        text_file.write_text('\n'.join(text_output), encoding='utf-8')
        written.append(text_file)

        if self.write_json:
            json_dir.mkdir(parents=True, exist_ok=True)
            report = {
                'file': filename,
                'tags': psf.tags if psf is not None else {},
                'banks': [bank_to_dict(bank) for bank in banks],
            }
            json_file = json_dir / f"{filename}.json"
            json_file.write_text(json.dumps(report, indent=2), encoding='utf-8')
            written.append(json_file)

        if self.write_samples:
            for i, bank in enumerate(banks):
                coll = bank.sample_collection
                for n, sample in enumerate(getattr(coll, 'samples', [])):
                    if sample is None:
                        continue
                    wav_file = wav_dir / f"{filename}_{i}_{n:03d}.wav"
                    write_sample_wav(sample, wav_file, self.sample_rate)
                    written.append(wav_file)

        return written

    def extract_all(self, name_filter: Optional[str] = None) -> int:
        """Extract all configured files.

        Args:
            name_filter: If specified, only extract files with this name

        Returns:
            Number of files that failed
        """
        entries = self.list_entries()
        if name_filter is not None:
            entries = [e for e in entries if e.display_name.lower() == name_filter.lower()]
            if not entries:
                print(f"WARNING: File {name_filter} not found in config")
                return 0

        failures = 0
        for entry in entries:
            filename = entry.display_name
            for char in '<>:"/\\|?*':
                filename = filename.replace(char, '_')

            print(f"Processing: {filename}")
            log = ParseLog()
            try:
                data = self.read_source_file(entry)
                psf, banks = self.load_banks(entry, data, log)
                if not banks:
                    print(f"  SKIP: {filename} (no VAB found)")
                    continue

                written = self.write_outputs(filename, psf, banks)
                regions = sum(bank.num_regions for bank in banks)
                print(f"  OK: {len(banks)} bank(s), {regions} region(s), "
                      f"{len(written)} file(s) written")
            except Exception as e:
                failures += 1
                print(f"  ERROR: {e} {traceback.format_exc()}")

        self.close()
        return failures

    def close(self):
        """Close the ISO and wrapper when done."""
        if self.iso:
            self.iso.close()
            self.iso = None
        if self._raw_wrapper is not None:
            self._raw_wrapper.close()
            self._raw_wrapper = None
