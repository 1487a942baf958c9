#!/usr/bin/env python3
"""
Zip Salvage - extract ZIP archives whose offsets and sizes wrapped past 4 GiB.

Some cloud-storage clients package large downloads as ZIP files with plain
32-bit offset and size fields, so everything past 4 GiB points at the wrong
place and regular unzip tools give up. This tool re-derives the true offsets
from the archive itself and extracts what it finds.
"""

import sys
sys.dont_write_bytecode = True

import argparse, os, zipfile, zlib

from zipsalvage import SalvageArchive, SalvageConfig, __version__
from zipsalvage.config import DEFAULT_ENCODING, DEFAULT_VERBOSITY


class ZipSalvage:
    def __init__(self):
        self.parser = self._create_parser()

    def _create_parser(self):
        """Create the command line argument parser."""
        parser = argparse.ArgumentParser(
            description="Recover and extract ZIP archives with wrapped 32-bit offsets"
        )

        # Global options
        parser.add_argument("file", help="ZIP archive to recover")
        parser.add_argument("-e", "--encoding", default=DEFAULT_ENCODING,
                            help=f"Encoding of entry names without the UTF-8 flag (default: {DEFAULT_ENCODING})")
        parser.add_argument("-l", "--log-level", type=int, choices=[0, 1, 2], default=DEFAULT_VERBOSITY,
                            help=f"0: errors and summary, 1: corrections and files, 2: debug (default: {DEFAULT_VERBOSITY})")
        parser.add_argument("--strict-local-headers", action="store_true",
                            help="Abort when any entry's local header cannot be found instead of skipping the entry")
        parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

        subparsers = parser.add_subparsers(dest="command", help="Command to execute")
        subparsers.required = True

        # List command
        list_parser = subparsers.add_parser("list", help="List the recovered contents of the archive")
        list_parser.add_argument("--long", "-L", action="store_true",
                                 help="Show permissions, sizes, dates and methods")
        # Make ls alias for list
        subparsers._name_parser_map["ls"] = list_parser

        # Extract command
        extract_parser = subparsers.add_parser("extract", help="Extract files from the archive")
        extract_parser.add_argument("--output-dir", "-o", default=".",
                                    help="Directory to extract files to (default: current directory)")
        extract_parser.add_argument("--stop-on-error", action="store_true",
                                    help="Stop at the first entry that cannot be written instead of continuing")

        return parser

    def run(self, argv=None):
        """Run the main program; returns the process exit status."""
        args = self.parser.parse_args(argv)

        if not os.path.isfile(args.file):
            print(f"Error: Archive {args.file} does not exist or is not a file", file=sys.stderr)
            return 1

        try:
            config = SalvageConfig.from_args(args)
        except LookupError as e:
            print(f"Error: Unknown encoding {args.encoding} ({e})", file=sys.stderr)
            return 1
        config.log(2, f"Configuration: {config!r}")

        try:
            with SalvageArchive(config) as archive:
                if args.command in ["list", "ls"]:
                    for line in archive.list_lines(long=args.long):
                        config.log(0, line)
                    return 0
                report = archive.extract()
        except zipfile.BadZipFile as e:
            config.error(f"{args.file} cannot be recovered ({e})")
            return 2
        except (OSError, zlib.error) as e:
            config.error(f"Extracting {args.file} failed: {e}")
            return 1

        return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(ZipSalvage().run())
