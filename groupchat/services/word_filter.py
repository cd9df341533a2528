"""
Display-time redaction of a viewer's hidden words.

Everything here is pure: nothing is persisted, and the stored message body is
never modified. Matching is case-insensitive substring matching. When hidden
words overlap, every character covered by at least one match is masked, so
the result does not depend on the order of the hidden word list.
"""

import re
from typing import Iterable, List, Optional

from groupchat.config import settings

MASK_CHAR = "*"


def sanitize_hidden_word(word: str) -> str:
    """Normalize a hidden word for storage: trimmed and lower-cased."""
    return word.strip().lower()


def validate_hidden_word(word: Optional[str], max_length: Optional[int] = None) -> bool:
    """A hidden word must be non-blank and at most ``max_length`` characters."""
    if word is None:
        return False
    limit = max_length if max_length is not None else settings.HIDDEN_WORD_MAX_LENGTH
    stripped = word.strip()
    return 0 < len(stripped) <= limit


def _terms(hidden_words: Optional[Iterable[str]]) -> List[str]:
    if not hidden_words:
        return []
    return [term for term in (w.strip() for w in hidden_words) if term]


def _match_spans(body: str, term: str):
    # Lookahead so overlapping occurrences of the same term are all reported.
    pattern = re.compile(f"(?=({re.escape(term)}))", re.IGNORECASE)
    for match in pattern.finditer(body):
        yield match.start(1), match.end(1)


def censor(body: str, hidden_words: Optional[Iterable[str]], mask: str = MASK_CHAR) -> str:
    """
    Replace every occurrence of each hidden word with a mask of equal length.

    ``censor(body, [])`` returns ``body`` unchanged.
    """
    terms = _terms(hidden_words)
    if not body or not terms:
        return body

    masked = [False] * len(body)
    for term in terms:
        for start, end in _match_spans(body, term):
            for index in range(start, end):
                masked[index] = True

    if not any(masked):
        return body

    return "".join(mask if hit else char for char, hit in zip(body, masked))


def contains_hidden_words(body: str, hidden_words: Optional[Iterable[str]]) -> bool:
    return bool(find_hidden_words(body, hidden_words))


def find_hidden_words(body: str, hidden_words: Optional[Iterable[str]]) -> List[str]:
    """Hidden words (as given) that occur in ``body``, in list order."""
    if not body:
        return []
    return [
        word for word in (hidden_words or [])
        if word.strip() and next(_match_spans(body, word.strip()), None) is not None
    ]
