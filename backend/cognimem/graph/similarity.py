"""
Trigram Similarity

Name similarity with the same semantics as PostgreSQL's pg_trgm
`similarity()`, computed in Python so duplicate detection behaves the
same on every backend.
"""
import re
from functools import lru_cache
from typing import FrozenSet

_WORD = re.compile(r"[^\W_]+", re.UNICODE)


@lru_cache(maxsize=4096)
def trigrams(text: str) -> FrozenSet[str]:
    """
    Trigram set of a string.

    Each lower-cased alphanumeric word is padded with two leading spaces
    and one trailing space before its 3-character windows are taken.
    """
    grams = set()
    for word in _WORD.findall(text.lower()):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            grams.add(padded[i:i + 3])
    return frozenset(grams)


def similarity(a: str, b: str) -> float:
    """Shared trigrams over all distinct trigrams, in [0, 1]."""
    ta, tb = trigrams(a), trigrams(b)
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / len(ta | tb)
