"""
Version string comparison.

Kernel and image versions are compared piecewise, the way package
managers do it: runs of digits compare numerically and runs of letters
compare alphabetically, so "10" sorts after "9" and "5.10.0" after
"5.9.12". Separators (".", "-", "_", ...) only delimit pieces.
"""

import re

_PIECE = re.compile(r"\d+|[A-Za-z]+")


def version_key(version: str) -> tuple:
    """
    Build a sort key for a version string.

    Numeric pieces sort after alphabetic ones at the same position, and a
    version that extends another ("5.10.1" vs "5.10") sorts after it. The
    raw string is the final tie-breaker so the order is total.

    Args:
        version: Version string, e.g. "5.10.0-1-amd64"

    Returns:
        A tuple usable as a sort key
    """
    pieces = tuple(
        (1, int(piece), "") if piece.isdigit() else (0, 0, piece)
        for piece in _PIECE.findall(version)
    )
    return (pieces, version)
