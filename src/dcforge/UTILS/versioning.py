"""
Version ordering for package listings.
"""
from typing import Tuple


def _parts(text: str) -> Tuple[Tuple[int, object], ...]:
    parts = []
    for piece in text.split("."):
        if piece.isascii() and piece.isdigit():
            parts.append((0, int(piece)))
        else:
            parts.append((1, piece.lower()))
    # 1.0 and 1.0.0 compare equal
    while parts and parts[-1] == (0, 0):
        parts.pop()
    return tuple(parts)


def version_sort_key(version: str):
    """
    Sort key for semantic-ish versions. A release sorts above its prereleases,
    numeric segments compare numerically and build metadata is ignored.

    :param version: A version string such as "1.2.0" or "2.0.0-beta.1".
    :return: A tuple usable with sorted(); larger means newer.
    """
    text = (version or "").strip().split("+", 1)[0]
    release, _, prerelease = text.partition("-")
    return (_parts(release), 0 if prerelease else 1, _parts(prerelease))


def is_prerelease(version: str) -> bool:
    return "-" in (version or "").split("+", 1)[0]
