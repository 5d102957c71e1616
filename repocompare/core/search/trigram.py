"""Trigram string similarity in the style of PostgreSQL pg_trgm.

Words are runs of alphanumerics, lowercased and padded with two leading
blanks and one trailing blank before being cut into 3-grams.
"""

import re
from functools import lru_cache
from typing import FrozenSet

_WORD = re.compile(r"[0-9a-z]+")


@lru_cache(maxsize=4096)
def trigrams(text: str) -> FrozenSet[str]:
    """Return the set of padded trigrams for ``text``."""
    grams = set()
    for word in _WORD.findall((text or "").lower()):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            grams.add(padded[i:i + 3])
    return frozenset(grams)


def similarity(a: str, b: str) -> float:
    """Jaccard similarity of the trigram sets; 1.0 for identical strings."""
    ta, tb = trigrams(a), trigrams(b)
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / len(ta | tb)


def word_similarity(needle: str, haystack: str) -> float:
    """Share of ``needle``'s trigrams that also occur in ``haystack``.

    High when the needle appears as a word (or word prefix) inside a
    longer text, unlike ``similarity`` which penalizes length mismatch.
    """
    tn = trigrams(needle)
    if not tn:
        return 0.0
    return len(tn & trigrams(haystack)) / len(tn)
