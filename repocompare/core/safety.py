"""Prompt-injection filtering for user input and model output."""

import logging
import re

from .errors import SuspiciousOutputError

logger = logging.getLogger(__name__)

MAX_INPUT_LENGTH = 5000
FILTERED = "[FILTERED]"

_INJECTION_PATTERNS = [
    re.compile(r"ignore\s+(all\s+)?(previous|prior|above)\s+instructions?", re.IGNORECASE),
    re.compile(r"disregard\s+(all\s+)?(previous|prior|above)\s+instructions?", re.IGNORECASE),
    re.compile(r"what\s+(is|are)\s+(your|the)\s+system\s+(prompt|instructions?)", re.IGNORECASE),
    re.compile(r"(show\s+me|repeat)\s+(your|the)\s+system\s+(prompt|instructions?)", re.IGNORECASE),
    re.compile(r"you\s+are\s+now", re.IGNORECASE),
    re.compile(r"act\s+as\s+(a|an)\b", re.IGNORECASE),
    re.compile(r"pretend\s+(to\s+be|you\s+are)", re.IGNORECASE),
    re.compile(r"\[/?(system|assistant|user)\]", re.IGNORECASE),
    re.compile(r"</?system>", re.IGNORECASE),
]

# A 10+ char chunk repeated more than five times in a row
_REPETITION = re.compile(r"(.{10,}?)\1{5,}", re.DOTALL)

_SUSPICIOUS_OUTPUT = [
    re.compile(r"system\s+prompt\s*:", re.IGNORECASE),
    re.compile(r"my\s+(system\s+)?instructions\s+(are|say)", re.IGNORECASE),
    re.compile(r"ignore\s+(all\s+)?previous\s+instructions", re.IGNORECASE),
    re.compile(r"<\s*script\b", re.IGNORECASE),
    re.compile(r"javascript\s*:", re.IGNORECASE),
    re.compile(r"\bon(load|error|click)\s*=", re.IGNORECASE),
]


def sanitize_user_input(text: str) -> str:
    """Neutralize override phrases, collapse spam, and cap length."""
    if not text:
        return ""
    cleaned = text
    for pattern in _INJECTION_PATTERNS:
        cleaned = pattern.sub(FILTERED, cleaned)
    cleaned = _REPETITION.sub(r"\1\1\1", cleaned)
    cleaned = cleaned[:MAX_INPUT_LENGTH].strip()
    if cleaned != text.strip():
        logger.info("User input was sanitized before prompting")
    return cleaned


def validate_output(raw: str) -> str:
    """Raise SuspiciousOutputError if model output looks like a prompt leak or markup injection."""
    for pattern in _SUSPICIOUS_OUTPUT:
        if pattern.search(raw or ""):
            logger.warning(f"Suspicious model output matched {pattern.pattern!r}")
            raise SuspiciousOutputError("Model output failed safety validation")
    return raw
