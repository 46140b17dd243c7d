"""String and vector similarity helpers shared by parsing and matching."""

import re
from typing import Sequence

import numpy as np

_WHITESPACE_PATTERN = re.compile(r"\s+")


def normalize_text(value: str) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    return _WHITESPACE_PATTERN.sub(" ", value.lower()).strip()


def words(value: str) -> list[str]:
    normalized = normalize_text(value)
    return normalized.split(" ") if normalized else []


def contains_either(a: str, b: str) -> bool:
    """True if either normalized string contains the other."""
    if not a or not b:
        return False
    return a in b or b in a


def shared_words(a: str, b: str, *, min_length: int = 3) -> set[str]:
    """Words of at least ``min_length`` characters present in both strings."""
    left = {w for w in words(a) if len(w) >= min_length}
    right = {w for w in words(b) if len(w) >= min_length}
    return left & right


def levenshtein_distance(a: str, b: str) -> int:
    """Minimum number of single-character inserts, deletes and substitutions."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    # Two-row dynamic programming over the shorter string.
    if len(a) < len(b):
        a, b = b, a

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            if char_a == char_b:
                current.append(previous[j - 1])
            else:
                current.append(
                    1 + min(previous[j], current[j - 1], previous[j - 1])
                )
        previous = current
    return previous[-1]


def cosine_similarities(query: Sequence[float], matrix: Sequence[Sequence[float]]) -> np.ndarray:
    """
    Cosine similarity of one query vector against each row of a matrix.

    Rows (or a query) with zero norm or mismatched length score 0.
    """
    rows = len(matrix)
    q = np.asarray(query, dtype=float)
    if rows == 0 or q.size == 0:
        return np.zeros(rows)

    if any(len(row) != q.size for row in matrix):
        scores = np.zeros(rows)
        for idx, row in enumerate(matrix):
            if len(row) == q.size:
                scores[idx] = cosine_similarities(q, [row])[0]
        return scores

    m = np.asarray(matrix, dtype=float)
    q_norm = np.linalg.norm(q)
    row_norms = np.linalg.norm(m, axis=1)
    if q_norm == 0:
        return np.zeros(rows)

    denom = row_norms * q_norm
    dots = m @ q
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(denom > 0, dots / denom, 0.0)
    return scores
