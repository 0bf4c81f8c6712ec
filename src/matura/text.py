"""
Text helpers shared by the pattern matcher and the structure quality check.

Japanese ideas have no spaces between words, so "words" are runs of a single
script: kanji, katakana, or latin letters/digits. Hiragana runs (particles,
verb endings) and punctuation separate words and are dropped.
"""

import re

_TOKEN_RE = re.compile(
    r"[㐀-䶿一-鿿々-〇]+"         # kanji, 々〆〇
    r"|[ァ-ヺー-ヿㇰ-ㇿｦ-ﾟ]+"  # katakana, not ・
    r"|[0-9a-zA-Z０-９Ａ-Ｚａ-ｚ]+"  # latin, digits
)


def tokenize(text: str) -> list[str]:
    """Split text into script-run words, lowercased."""
    return [token.lower() for token in _TOKEN_RE.findall(text or "")]


def word_set(text: str) -> frozenset[str]:
    return frozenset(tokenize(text))


def jaccard(left: str, right: str) -> float:
    """Word-overlap ratio: |intersection| / |union|, 0.0 when both are empty."""
    a = word_set(left)
    b = word_set(right)
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)
