"""SimHash fingerprinting for near-duplicate text detection."""

from __future__ import annotations

import hashlib
from typing import Sequence

from ..errors import FingerprintMismatchError

HASH_BITS = 64
HEX_WIDTH = HASH_BITS // 4
EMPTY_FINGERPRINT = "0" * HEX_WIDTH
DEFAULT_SHINGLE_SIZE = 3


def tokenize(text: str, shingle_size: int = DEFAULT_SHINGLE_SIZE) -> list[str]:
    """Split text into overlapping word shingles.

    Anything that is not a letter or whitespace becomes a separator, so digits
    and punctuation never contribute to a fingerprint.
    """

    lowered = text.lower()
    letters_only = "".join(ch if ch.isalpha() or ch.isspace() else " " for ch in lowered)
    words = letters_only.split()
    if len(words) < shingle_size:
        return [" ".join(words)]
    return [" ".join(words[i : i + shingle_size]) for i in range(len(words) - shingle_size + 1)]


def _hash_token(token: str) -> int:
    digest = hashlib.md5(token.encode("utf-8"), usedforsecurity=False).hexdigest()
    return int(digest[:HEX_WIDTH], 16)


def compute_simhash(text: str) -> str:
    """Return the 64-bit SimHash of ``text`` as 16 lower-case hex digits."""

    if not text or not text.strip():
        return EMPTY_FINGERPRINT

    weights = [0] * HASH_BITS
    for shingle in tokenize(text):
        value = _hash_token(shingle)
        for bit in range(HASH_BITS):
            if (value >> bit) & 1:
                weights[bit] += 1
            else:
                weights[bit] -= 1

    fingerprint = 0
    for bit, weight in enumerate(weights):
        # ties resolve to 0
        if weight > 0:
            fingerprint |= 1 << bit
    return format(fingerprint, f"0{HEX_WIDTH}x")


def hamming_distance(first: str, second: str) -> int:
    if len(first) != len(second):
        raise FingerprintMismatchError(
            f"Fingerprints differ in width: {len(first)} != {len(second)}"
        )
    return (int(first, 16) ^ int(second, 16)).bit_count()


def similarity(first: str, second: str) -> float:
    """Similarity in [0, 1] where 1 means identical fingerprints."""

    return 1 - hamming_distance(first, second) / HASH_BITS


def are_near_duplicates(first_text: str, second_text: str, max_distance: int = 3) -> bool:
    return hamming_distance(compute_simhash(first_text), compute_simhash(second_text)) <= max_distance


def group_fingerprints(fingerprints: Sequence[str], max_distance: int = 3) -> list[list[int]]:
    """Greedily group fingerprint indices within ``max_distance`` of a seed.

    Each unvisited index seeds a group and absorbs every later unvisited index
    within range of the seed. Membership follows visitation order, so the
    grouping is not an equivalence relation. Only groups with two or more
    members are returned.
    """

    visited: set[int] = set()
    groups: list[list[int]] = []
    for seed, seed_print in enumerate(fingerprints):
        if seed in visited:
            continue
        group = [seed]
        visited.add(seed)
        for candidate in range(seed + 1, len(fingerprints)):
            if candidate in visited:
                continue
            if hamming_distance(seed_print, fingerprints[candidate]) <= max_distance:
                group.append(candidate)
                visited.add(candidate)
        if len(group) > 1:
            groups.append(group)
    return groups


def find_near_duplicate_groups(texts: Sequence[str], max_distance: int = 3) -> list[list[int]]:
    return group_fingerprints([compute_simhash(text) for text in texts], max_distance)


__all__ = [
    "EMPTY_FINGERPRINT",
    "HASH_BITS",
    "are_near_duplicates",
    "compute_simhash",
    "find_near_duplicate_groups",
    "group_fingerprints",
    "hamming_distance",
    "similarity",
    "tokenize",
]
