#!/usr/bin/env python3
"""
PlayStation VAB / PSF bank extractor.

Parses VAB instrument banks (standalone, or embedded in PSF program
images) and writes text listings, JSON reports and decoded samples.
"""

import sys
import traceback

from bank_extractor import BankExtractor


def main(argv=None) -> int:
    """Main entry point."""
    argv = list(sys.argv[1:] if argv is None else argv)

    # Parse command-line arguments
    name_filter = None
    args = []

    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg == '--file' and i + 1 < len(argv):
            name_filter = argv[i + 1]
            i += 1  # Skip next arg
        else:
            args.append(arg)
        i += 1

    if len(args) < 2:
        print("Usage: python extract_vab.py <config.yaml> <source> [options]")
        print()
        print("Arguments:")
        print("  config.yaml             - Extraction configuration file")
        print("  source                  - Directory or PSX disc image (ISO / raw BIN)")
        print()
        print("Options:")
        print("  --file <name>           - Extract only the named file")
        print()
        print("Examples:")
        print("  python extract_vab.py banks.yaml ./rips")
        print("  python extract_vab.py game.yaml game.bin --file SOUND.VAB")
        return 1

    config_file = args[0]
    source = args[1]

    try:
        extractor = BankExtractor(config_file, source)
        failures = extractor.extract_all(name_filter=name_filter)
    except Exception as e:
        print(f"\nError: {e}")
        print("\nFull traceback:")
        traceback.print_exc()
        return 1

    return 1 if failures else 0


if __name__ == '__main__':
    sys.exit(main())
