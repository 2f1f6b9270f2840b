"""Company name and domain similarity helpers."""

import re
from difflib import SequenceMatcher

from services.shared.normalize import fold_umlauts, normalize_website

# Legal-form suffixes stripped before comparing company names
_COMPANY_SUFFIXES = [
    r"g\.?m\.?b\.?h\.?",
    r"ges\.?m\.?b\.?h\.?",
    r"ag",
    r"kg",
    r"ohg",
    r"og",
    r"e\.?u\.?",
    r"&\s*co\.?\s*(?:kg|ohg)?",
    r"ltd\.?",
    r"limited",
    r"inc\.?",
    r"corp\.?",
    r"llc",
    r"llp",
    r"plc",
    r"s\.?a\.?r\.?l\.?",
    r"sas",
    r"s\.?r\.?l\.?",
    r"s\.?p\.?a\.?",
    r"b\.?v\.?",
    r"n\.?v\.?",
]
_SUFFIX_PATTERNS = [
    re.compile(rf"(?<![a-z0-9])\s*{suffix}\s*$", re.IGNORECASE) for suffix in _COMPANY_SUFFIXES
]


def normalize_company_name(name: str | None) -> str:
    """Lowercase, strip legal suffixes and punctuation, fold umlauts."""
    if not name:
        return ""
    normalized = name.lower().strip()
    for pattern in _SUFFIX_PATTERNS:
        normalized = pattern.sub("", normalized)
    normalized = re.sub(r"[^a-z0-9äöüß\s]", " ", normalized)
    normalized = fold_umlauts(normalized)
    return re.sub(r"\s+", " ", normalized).strip()


def string_similarity(a: str, b: str) -> int:
    """SequenceMatcher ratio scaled to 0-100."""
    s1, s2 = a.lower().strip(), b.lower().strip()
    if s1 == s2:
        return 100
    if not s1 or not s2:
        return 0
    return round(SequenceMatcher(None, s1, s2).ratio() * 100)


def name_similarity(name1: str | None, name2: str | None) -> int:
    """Similarity of two company names (0-100).

    Identical normalized names score 100. When one name contains the other
    the score is 75 plus up to 25 for how much of the longer name is covered.
    Otherwise the sequence similarity is used.
    """
    n1 = normalize_company_name(name1)
    n2 = normalize_company_name(name2)
    if not n1 or not n2:
        return 0
    if n1 == n2:
        return 100
    if n1 in n2 or n2 in n1:
        shorter, longer = sorted((n1, n2), key=len)
        return round(75 + len(shorter) / len(longer) * 25)
    return string_similarity(n1, n2)


def domains_match(domain1: str | None, domain2: str | None) -> bool:
    """Compare two domains or URLs; a subdomain matches its parent."""
    d1 = normalize_website(domain1)
    d2 = normalize_website(domain2)
    if not d1 or not d2:
        return False
    return d1 == d2 or d1.endswith(f".{d2}") or d2.endswith(f".{d1}")
