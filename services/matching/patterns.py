"""Glob-style pattern matching shared by the partner and category matchers.

Patterns support a single wildcard, ``*``, and must match the whole text.
German umlauts are transliterated on both sides so "häusler*" matches a bank
export that reads "HAEUSLER GMBH".
"""

import re

from services.shared.normalize import fold_umlauts


def is_glob(pattern: str) -> bool:
    return "*" in pattern


def glob_match(pattern: str | None, text: str | None) -> bool:
    """Match a glob pattern against the entire text.

    Args:
        pattern: Pattern such as "*amazon*" or "paypal*"
        text: Text to test

    Returns:
        True if the pattern covers the whole text
    """
    if not pattern or not text:
        return False
    folded_pattern = fold_umlauts(pattern.strip())
    folded_text = fold_umlauts(text.strip())
    regex = ".*".join(re.escape(part) for part in folded_pattern.split("*"))
    return re.fullmatch(regex, folded_text) is not None


def transaction_text(*fields: str | None) -> str:
    """Lowercased concatenation of the non-empty transaction text fields."""
    return " ".join(f for f in fields if f).lower()
