"""Word splitting for reading-level estimates.

Text is lower-cased and line breaks (``<br>`` markup or newlines) become
separators. Tokens are split on Unicode space separators, control characters
and a handful of zero-width and bidi formatting characters. Punctuation that
touches a separator or either end of the text is dropped, while punctuation
inside a token is kept, so ``can't``, ``3.14`` and ``can-do`` are single words.
"""

import re
import unicodedata
from collections.abc import Iterable, Iterator

_LINE_BREAK = re.compile(r"<br\s*/?>(?:\s*</br>)?|\r?\n", re.IGNORECASE)

_FORMAT_SEPARATORS = frozenset(
    "\u200b\u200e\u200f"
    + "".join(chr(c) for c in range(0x202A, 0x202F))
    + "".join(chr(c) for c in range(0x2066, 0x206A))
)
_SEPARATOR_CATEGORIES = frozenset({"Zs", "Zl", "Zp", "Cc"})


def is_separator(char: str) -> bool:
    return char in _FORMAT_SEPARATORS or unicodedata.category(char) in _SEPARATOR_CATEGORIES


def is_punctuation(char: str) -> bool:
    return unicodedata.category(char).startswith("P")


class Words(Iterable[str]):
    """Lazy word tokens of a text fragment. Iterating again starts over."""

    def __init__(self, text: str | None) -> None:
        self._text = _LINE_BREAK.sub(" ", (text or "").lower())

    def __iter__(self) -> Iterator[str]:
        token: list[str] = []
        for char in self._text:
            if is_separator(char):
                word = _strip_punctuation(token)
                if word:
                    yield word
                token = []
            else:
                token.append(char)
        word = _strip_punctuation(token)
        if word:
            yield word


def _strip_punctuation(chars: list[str]) -> str:
    start, end = 0, len(chars)
    while start < end and is_punctuation(chars[start]):
        start += 1
    while end > start and is_punctuation(chars[end - 1]):
        end -= 1
    return "".join(chars[start:end])


def word_count(text: str | None) -> int:
    """Number of words in text; empty or separator-only text has none."""
    return sum(1 for _ in Words(text))


def level_for_word_count(words_per_page: int) -> int:
    """Map the busiest page's word count to a reading level from 1 to 4."""
    if words_per_page <= 10:
        return 1
    if words_per_page <= 25:
        return 2
    if words_per_page <= 50:
        return 3
    return 4
