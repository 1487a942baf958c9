"""
Resolved options for one salvage run, plus the output helpers every stage uses.
"""

import codecs
import os
import sys

DEFAULT_ENCODING = "gbk"    # Cloud-storage packers write GBK names without the UTF-8 flag
DEFAULT_VERBOSITY = 1

# Verbosity levels
QUIET = 0      # Errors and the final summary
INFO = 1       # Corrections and extracted entries
DEBUG = 2      # Offsets found, data regions


def make_name_decoder(encoding):
    """Build a bytes -> str decoder for names stored in a legacy encoding.

    Args:
        encoding: Any codec name known to Python (gbk, cp437, shift_jis, ...).

    Returns:
        A function decoding raw name bytes; undecodable bytes survive as
        surrogates so they still map back to the original bytes on disk.
    """
    codec = codecs.lookup(encoding).name

    def decode_name(raw):
        return bytes(raw).decode(codec, errors="surrogateescape")

    return decode_name


def _emit(message, stream):
    # Names undecodable in the configured codec carry surrogates
    encoding = getattr(stream, "encoding", None) or "utf-8"
    print(message.encode(encoding, errors="backslashreplace").decode(encoding), file=stream)


class SalvageConfig:
    """Configuration threaded through recovery and extraction."""
    __slots__ = ("input_path", "output_dir", "encoding", "verbosity",
                 "keep_going", "strict_local_headers", "name_decoder")

    def __init__(self, input_path, output_dir=".", encoding=DEFAULT_ENCODING,
                 verbosity=DEFAULT_VERBOSITY, keep_going=True,
                 strict_local_headers=False, name_decoder=None):
        self.input_path = input_path
        self.output_dir = output_dir
        self.encoding = encoding
        self.verbosity = verbosity
        # Continue with the next entry when one destination fails
        self.keep_going = keep_going
        # Abort the whole archive when a single local header is missing
        self.strict_local_headers = strict_local_headers
        self.name_decoder = name_decoder or make_name_decoder(encoding)

    @classmethod
    def from_args(cls, args):
        """Build a configuration from parsed command-line arguments."""
        return cls(
            input_path=args.file,
            output_dir=getattr(args, "output_dir", None) or ".",
            encoding=args.encoding,
            verbosity=args.log_level,
            keep_going=not getattr(args, "stop_on_error", False),
            strict_local_headers=args.strict_local_headers,
        )

    def decode_name(self, raw, utf8=False):
        """Entry name as text: UTF-8 when the entry is flagged so, else the configured codec."""
        if utf8:
            return bytes(raw).decode("utf-8", errors="surrogateescape")
        return self.name_decoder(raw)

    def log(self, level, message):
        """Print a message when the configured verbosity allows it."""
        if level <= self.verbosity:
            _emit(message, sys.stdout)

    def warn(self, message):
        _emit(f"Warning: {message}", sys.stderr)

    def error(self, message):
        _emit(f"Error: {message}", sys.stderr)

    def __repr__(self):
        return (f"SalvageConfig(input_path={self.input_path!r}, "
                f"output_dir={os.fspath(self.output_dir)!r}, "
                f"encoding={self.encoding!r}, verbosity={self.verbosity}, "
                f"keep_going={self.keep_going}, "
                f"strict_local_headers={self.strict_local_headers})")
