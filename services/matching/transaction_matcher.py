"""Score bank transactions against an extracted invoice.

Points per signal:

- amount: exact 40, within 1% 38, 5% 30, 10% 20 (halved on currency mismatch)
- date: same day 25, 3 days 22, a week 15, two weeks 8, a month 3
- partner: same partner id 25, otherwise name comparison 12-25
- IBAN: 10
- reference found in the document text: 5

When the partner matches, a good date is boosted and a poor date costs part
of the partner score, which separates monthly invoices from the same vendor.
The total is capped at 100.
"""

import datetime as dt
import re
from collections.abc import Iterable

from pydantic import BaseModel, Field

from services.shared.normalize import normalize_iban
from services.store.models import Document, Transaction, TransactionSuggestion

AUTO_MATCH_THRESHOLD = 85
SUGGESTION_THRESHOLD = 50
DATE_RANGE_DAYS = 30
MAX_SUGGESTIONS = 5

_NAME_NOISE = re.compile(
    r"(?<![a-z0-9])(gmbh|ag|kg|ohg|ug|e\.?k\.?|inc\.?|ltd\.?|llc|co\.?)(?![a-z0-9])",
    re.IGNORECASE,
)


class ScoreBreakdown(BaseModel):
    amount: int = 0
    date: int = 0
    partner: int = 0
    iban: int = 0
    reference: int = 0


class TransactionScore(BaseModel):
    transaction_id: str
    confidence: int
    match_sources: list[str] = Field(default_factory=list)
    breakdown: ScoreBreakdown


def normalize_name(name: str) -> str:
    return re.sub(r"\s+", " ", _NAME_NOISE.sub(" ", name.lower())).strip()


def name_match_score(name1: str, name2: str) -> int:
    """Fuzzy name comparison: exact 25, containment 18, word overlap 15 or 12."""
    n1, n2 = normalize_name(name1), normalize_name(name2)
    if not n1 or not n2:
        return 0
    if n1 == n2:
        return 25
    if n1 in n2 or n2 in n1:
        return 18

    words1 = [w for w in n1.split(" ") if len(w) > 2]
    words2 = [w for w in n2.split(" ") if len(w) > 2]
    overlap = [w for w in words1 if any(w == o or w in o or o in w for o in words2)]
    if len(overlap) >= 2:
        return 15
    if overlap and (len(words1) <= 2 or len(words2) <= 2):
        return 12
    return 0


def amount_score(
    document_amount: int,
    transaction_amount: int,
    document_currency: str | None,
    transaction_currency: str | None,
) -> tuple[int, str | None]:
    a, b = abs(document_amount), abs(transaction_amount)
    if a == 0 or b == 0:
        return 0, None

    score, source = 0, None
    difference = abs(a - b)
    if difference == 0:
        score, source = 40, "amount_exact"
    elif difference <= a * 0.01:
        score, source = 38, "amount_close"
    elif difference <= a * 0.05:
        score, source = 30, "amount_close"
    elif difference <= a * 0.1:
        score, source = 20, "amount_close"

    if score and (document_currency or "EUR").upper() != (transaction_currency or "EUR").upper():
        score = round(score * 0.5)
    return score, source


def date_score(document_date: dt.date, transaction_date: dt.date) -> tuple[int, str | None]:
    days = abs((document_date - transaction_date).days)
    if days == 0:
        return 25, "date_exact"
    for limit, score in ((3, 22), (7, 15), (14, 8), (30, 3)):
        if days <= limit:
            return score, "date_close"
    return 0, None


def partner_score(
    document: Document, transaction: Transaction, partner_aliases: Iterable[str] = ()
) -> int:
    if document.partner_id and transaction.partner_id == document.partner_id:
        return 25

    transaction_name = transaction.name or transaction.partner or ""
    if not transaction_name:
        return 0
    if document.extracted_partner:
        score = name_match_score(document.extracted_partner, transaction_name)
        if score:
            return score
    for alias in partner_aliases:
        score = name_match_score(alias, transaction_name)
        if score:
            return score
    return 0


def score_transaction(
    document: Document, transaction: Transaction, partner_aliases: Iterable[str] = ()
) -> TransactionScore:
    """Score one transaction against the document's extracted data."""
    breakdown = ScoreBreakdown()
    sources: list[str] = []

    if document.extracted_amount is not None:
        breakdown.amount, source = amount_score(
            document.extracted_amount,
            transaction.amount,
            document.extracted_currency,
            transaction.currency,
        )
        if source:
            sources.append(source)

    if document.extracted_date:
        breakdown.date, source = date_score(document.extracted_date, transaction.date)
        if source:
            sources.append(source)

    breakdown.partner = partner_score(document, transaction, partner_aliases)
    if breakdown.partner:
        sources.append("partner")

    if breakdown.partner >= 15 and document.extracted_date:
        if breakdown.date >= 15:
            breakdown.date = min(37, round(breakdown.date * 1.5))
        elif breakdown.date <= 3:
            # Same vendor, wrong month
            breakdown.partner = round(breakdown.partner * 0.6)

    document_iban = normalize_iban(document.extracted_iban)
    if document_iban and document_iban == normalize_iban(transaction.partner_iban):
        breakdown.iban = 10
        sources.append("iban")

    reference = transaction.reference or ""
    if document.extracted_text and len(reference) >= 3:
        if reference.lower() in document.extracted_text.lower():
            breakdown.reference = 5
            if breakdown.date < 15:
                breakdown.date = min(25, breakdown.date + 10)
            sources.append("reference")

    total = (
        breakdown.amount + breakdown.date + breakdown.partner + breakdown.iban + breakdown.reference
    )
    return TransactionScore(
        transaction_id=transaction.id,
        confidence=min(100, total),
        match_sources=sources,
        breakdown=breakdown,
    )


def match_transactions(
    document: Document,
    transactions: Iterable[Transaction],
    partner_aliases: Iterable[str] = (),
) -> list[TransactionSuggestion]:
    """Rank candidate transactions for a document.

    Only transactions within DATE_RANGE_DAYS of the invoice date are scored
    when the document has a date.

    Returns:
        Up to MAX_SUGGESTIONS suggestions at or above SUGGESTION_THRESHOLD
    """
    aliases = list(partner_aliases)
    scores: list[TransactionScore] = []
    for transaction in transactions:
        if document.extracted_date:
            if abs((document.extracted_date - transaction.date).days) > DATE_RANGE_DAYS:
                continue
        score = score_transaction(document, transaction, aliases)
        if score.confidence >= SUGGESTION_THRESHOLD:
            scores.append(score)

    scores.sort(key=lambda s: s.confidence, reverse=True)
    return [
        TransactionSuggestion(
            transaction_id=s.transaction_id, confidence=s.confidence, match_sources=s.match_sources
        )
        for s in scores[:MAX_SUGGESTIONS]
    ]


def should_auto_match(suggestion: TransactionSuggestion) -> bool:
    return suggestion.confidence >= AUTO_MATCH_THRESHOLD
