"""
Signature scanning over a ByteSource.

Record signatures can legitimately recur inside names, comments and file data,
so matching is done byte by byte with a small explicit state machine instead
of a substring search, keeping the exact "first occurrence" semantics.
"""

WRAP = 1 << 32              # A 32-bit field loses everything above this
SCAN_CHUNK_SIZE = 64 * 1024


class SignatureMatcher:
    """Matcher fed one byte at a time.

    The state is the number of leading signature bytes matched so far
    (0..len(signature) - 1). A mismatch drops the state to zero and the same
    byte is tried again as the first signature byte.
    """

    def __init__(self, signature):
        self.signature = bytes(signature)
        self.state = 0

    def reset(self):
        self.state = 0

    def feed(self, byte):
        """Advance with one byte; True when it completes the signature."""
        if byte == self.signature[self.state]:
            self.state += 1
        elif byte == self.signature[0]:
            self.state = 1
        else:
            self.state = 0

        if self.state == len(self.signature):
            self.state = 0
            return True
        return False


def scan_buffer(data, signature, start=0, end=None):
    """Find the first occurrence of signature in data[start:end].

    Args:
        data: The buffer to scan.
        signature: Record signature (4 bytes for ZIP records).
        start: First index to scan.
        end: Index to stop at (exclusive), defaults to the buffer length.

    Returns:
        Index of the first byte of the match within data, or None.
    """
    if end is None:
        end = len(data)
    matcher = SignatureMatcher(signature)
    for index in range(start, end):
        if matcher.feed(data[index]):
            return index - len(signature) + 1
    return None


def find_signature(source, search_start, search_length, signature,
                   chunk_size=SCAN_CHUNK_SIZE):
    """Find the first occurrence of signature in a range of source.

    The range is clipped to the source and read in bounded chunks; matcher
    state carries across chunk boundaries.

    Returns:
        Absolute offset of the match, or None.
    """
    search_end = min(search_start + search_length, source.size())
    matcher = SignatureMatcher(signature)
    offset = search_start
    for chunk in source.iter_range(search_start, search_end, chunk_size):
        for index, byte in enumerate(chunk):
            if matcher.feed(byte):
                return offset + index - len(signature) + 1
        offset += len(chunk)
    return None


def find_wrapped_offset(source, claimed_offset, signature, ceiling):
    """Recover an offset that may have wrapped modulo 2^32.

    The true offset is congruent to the stored one modulo 2^32 and lies
    below ceiling, so claimed, claimed + 2^32, claimed + 2 * 2^32, ... are
    tried in turn until the signature is found there.

    Args:
        source: ByteSource to probe.
        claimed_offset: The offset as stored in the archive.
        signature: Signature expected at the true offset.
        ceiling: Exclusive upper bound for the true offset.

    Returns:
        The smallest matching offset below ceiling, or None.
    """
    length = len(signature)
    limit = min(ceiling, source.size() - length + 1)
    offset = claimed_offset
    while offset < limit:
        if source.read(offset, length) == signature:
            return offset
        offset += WRAP
    return None

