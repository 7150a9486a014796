"""Text normalization and keyword matching shared by the analyzers."""
from functools import lru_cache
from typing import Iterable
import re

_NON_WORD_RE = re.compile(r"[^\w\s]", re.UNICODE)
_WHITESPACE_RE = re.compile(r"\s+")

# Simple inflections so "flights", "booking" and "planning" hit their
# keyword while "plane" does not hit "plan".
_SUFFIXES = r"(?:s|es|ed|ing|ning|ned|ion|ions|ation|ations|er|ers)?"


def normalize_text(text: str) -> str:
    """Lower-case, replace punctuation with spaces, collapse whitespace."""
    if not text:
        return ""
    text = _NON_WORD_RE.sub(" ", text.lower())
    return _WHITESPACE_RE.sub(" ", text).strip()


@lru_cache(maxsize=1024)
def _keyword_re(keyword: str) -> re.Pattern:
    return re.compile(r"\b" + re.escape(keyword.lower()) + _SUFFIXES + r"\b", re.IGNORECASE)


def keyword_matches(text: str, keywords: Iterable[str]) -> list[str]:
    """Return the keywords (each at most once) that occur in normalized text."""
    return [kw for kw in keywords if kw.strip() and _keyword_re(kw.strip()).search(text)]


def mentions_any(text: str, terms: Iterable[str]) -> bool:
    return bool(keyword_matches(normalize_text(text), terms))
