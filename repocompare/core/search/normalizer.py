"""Query normalization shared by cache writes and cache lookups."""

import re
from typing import Optional

_WHITESPACE = re.compile(r"\s+")


def normalize(text: Optional[str]) -> str:
    """Trim, lowercase, and collapse whitespace runs to a single space.

    Total and idempotent: ``normalize(normalize(x)) == normalize(x)``.
    """
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text).strip().lower()
