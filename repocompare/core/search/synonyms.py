"""Static synonym expansion for comparison search terms."""

from typing import Dict, Iterable, List, Tuple

from .normalizer import normalize

_AUTH = ("auth", "authentication", "authorize", "authorization")
_JOBS = ("job", "jobs", "queue", "queues", "worker", "workers")
_DB = ("db", "database", "databases", "persistence", "storage")
_TESTS = ("test", "tests", "testing", "spec", "specs")
_JS = ("js", "javascript", "node", "nodejs", "node.js")
_TS = ("ts", "typescript")
_PY = ("py", "python")
_RB = ("rb", "ruby")

# Key = base term, value = synonym set including the base term
SYNONYMS: Dict[str, Tuple[str, ...]] = {
    "auth": _AUTH,
    "authentication": _AUTH,
    "job": _JOBS,
    "jobs": _JOBS,
    "queue": _JOBS,
    "worker": _JOBS,
    "api": ("api", "rest", "restful", "endpoint", "endpoints"),
    "backend": ("backend", "back-end", "server", "server-side"),
    "frontend": ("frontend", "front-end", "client", "client-side", "ui", "interface"),
    "ui": ("ui", "interface", "frontend", "front-end"),
    "db": _DB,
    "database": _DB,
    "orm": ("orm", "object-relational", "active record", "activerecord"),
    "test": _TESTS,
    "testing": _TESTS,
    "state": ("state", "states", "state management", "store", "redux"),
    "js": _JS,
    "javascript": _JS,
    "node": _JS,
    "ts": _TS,
    "typescript": _TS,
    "py": _PY,
    "python": _PY,
    "rb": _RB,
    "ruby": _RB,
}


def _dedup(terms: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for term in terms:
        if term not in seen:
            seen.add(term)
            result.append(term)
    return result


def expand(term: str) -> List[str]:
    """Return the synonym set for ``term``, or ``[term]`` when it has none."""
    key = normalize(term)
    synonyms = SYNONYMS.get(key)
    if not synonyms:
        return [key]
    return _dedup(synonyms)


def expand_all(terms: Iterable[str]) -> List[str]:
    """Union of per-term expansions, first-seen order, no duplicates."""
    return _dedup(variant for term in terms for variant in expand(term))


def has_synonyms(term: str) -> bool:
    return normalize(term) in SYNONYMS
