"""Value normalisation shared by providers, resolver and matchers.

All functions are pure and idempotent: normalising an already normalised
value returns it unchanged.
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

CURRENCY_SYMBOLS: dict[str, str] = {
    "€": "EUR",
    "$": "USD",
    "£": "GBP",
    "¥": "JPY",
    "FR.": "CHF",
    "CHF": "CHF",
}

DEFAULT_CURRENCY = "EUR"

_DATE_FORMATS = ("%Y-%m-%d", "%d.%m.%Y", "%d/%m/%Y", "%d.%m.%y")

_UMLAUTS = str.maketrans({"ä": "ae", "ö": "oe", "ü": "ue", "ß": "ss"})


def normalize_vat_id(value: str | None) -> str | None:
    """Uppercase a VAT ID and strip everything that is not alphanumeric.

    Args:
        value: VAT ID as printed on a document, e.g. "ATU 123-456 78"

    Returns:
        Normalised VAT ID ("ATU12345678") or None for empty input
    """
    if not value:
        return None
    cleaned = re.sub(r"[^A-Z0-9]", "", value.upper())
    return cleaned or None


def normalize_iban(value: str | None) -> str | None:
    """Uppercase an IBAN and strip whitespace."""
    if not value:
        return None
    cleaned = re.sub(r"\s+", "", value.upper())
    return cleaned or None


def normalize_website(value: str | None) -> str | None:
    """Reduce a website or e-mail address to its bare domain.

    "https://www.example.com/contact" and "billing@example.com" both become
    "example.com". Values without a dot are rejected.
    """
    if not value:
        return None
    domain = value.strip().lower()
    if "@" in domain:
        domain = domain.split("@", 1)[1]
    domain = re.sub(r"^[a-z]+://", "", domain)
    domain = re.sub(r"^www\.", "", domain)
    domain = re.split(r"[/?#]", domain, maxsplit=1)[0]
    domain = domain.split(":", 1)[0]
    if "." not in domain:
        return None
    return domain


def normalize_currency(value: str | None) -> str | None:
    """Map a currency symbol or code to its ISO 4217 code.

    Empty values stay None, unrecognised symbols default to EUR.
    """
    if not value:
        return None
    token = value.strip().upper()
    if token in CURRENCY_SYMBOLS:
        return CURRENCY_SYMBOLS[token]
    if re.fullmatch(r"[A-Z]{3}", token):
        return token
    return DEFAULT_CURRENCY


def parse_date(value: str | date | None) -> date | None:
    """Parse ISO, German (DD.MM.YYYY) and slash (DD/MM/YYYY) dates."""
    if value is None:
        return None
    if isinstance(value, date):
        return value
    text = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_amount_minor(value: str | int | float | None) -> int | None:
    """Convert a printed amount into integer minor units.

    Handles both decimal conventions:
        "123,45" -> 12345
        "1.234,56" -> 123456
        "1,234.56" -> 123456
        "€ 149,99" -> 14999

    Integers are taken to already be minor units. Floats are major units.

    Args:
        value: Amount from model output or document text

    Returns:
        Amount in minor units, or None if not parseable
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int((Decimal(str(value)) * 100).quantize(Decimal("1")))

    text = re.sub(r"[^\d,.\-]", "", value)
    if not text or not re.search(r"\d", text):
        return None

    last_comma = text.rfind(",")
    last_dot = text.rfind(".")
    if last_comma > last_dot and last_dot == -1 and text.count(",") > 1:
        text = text.replace(",", "")
    elif last_comma > last_dot:
        # Comma is the decimal separator, dots group thousands
        text = text.replace(".", "").replace(",", ".")
    elif last_dot > last_comma and last_comma != -1:
        text = text.replace(",", "")
    elif last_dot != -1 and len(text) - last_dot - 1 == 3 and text.count(".") >= 1:
        # "1.234" is a thousands group, not a decimal
        text = text.replace(".", "")

    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    return int((amount * 100).quantize(Decimal("1")))


def format_amount_minor(amount: int) -> str:
    """Format minor units using the comma decimal convention (12345 -> "123,45")."""
    sign = "-" if amount < 0 else ""
    major, minor = divmod(abs(amount), 100)
    return f"{sign}{major},{minor:02d}"


def parse_percent(value: str | int | float | None) -> int | None:
    """Parse a VAT percentage into an integer 0-100."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        match = re.search(r"\d+(?:[.,]\d+)?", value)
        if not match:
            return None
        number = float(match.group(0).replace(",", "."))
    if number < 0 or number > 100:
        return None
    return round(number)


def fold_umlauts(value: str) -> str:
    """Lowercase and transliterate German umlauts (ä -> ae, ß -> ss)."""
    return value.lower().translate(_UMLAUTS)
