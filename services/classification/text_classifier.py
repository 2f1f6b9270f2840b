"""Fast text-based invoice pre-classifier.

Decides "is this an invoice?" from the embedded text of a PDF using regex
and keyword scoring, before paying for a model call. Scanned PDFs and images
have no embedded text and always come back "uncertain".

Score weights:
    invoice keywords +3, VAT terms +2, currency and amount together +2,
    IBAN +1, non-invoice keywords -4 (two or more) or -2 (one)

Thresholds:
    >= 4 invoice/high, 2..3 invoice/medium, <= -2 not-invoice/high,
    -1 not-invoice/medium, otherwise invoice/uncertain
"""

import logging
import re
import time
from typing import Literal

from pydantic import BaseModel, Field

from services.ocr.pdf import extract_pdf_text, is_pdf

logger = logging.getLogger(__name__)

Confidence = Literal["high", "medium", "low", "uncertain"]

MIN_TEXT_LENGTH = 50
DEFAULT_MAX_PAGES = 3

_I = re.IGNORECASE

CURRENCY_PATTERNS = [
    re.compile(r"€|EUR|EURO", _I),
    re.compile(r"\$|USD", _I),
    re.compile(r"£|GBP", _I),
    re.compile(r"CHF", _I),
    re.compile(r"¥|JPY|CNY", _I),
]

VAT_PATTERNS = [
    re.compile(r"\bVAT\b", _I),
    re.compile(r"\bMwSt\.?\b", _I),
    re.compile(r"\bMehrwertsteuer\b", _I),
    re.compile(r"\bUSt\.?\b", _I),
    re.compile(r"\bUmsatzsteuer\b", _I),
    re.compile(r"\bTVA\b", _I),
    re.compile(r"\bIVA\b", _I),
    re.compile(r"\b(?:19|20|7|5)%\s*(?:VAT|MwSt|Tax)", _I),
    re.compile(r"VAT[-\s]?(?:ID|Nr|Number)", _I),
    re.compile(r"Steuer(?:nummer|nr\.?)", _I),
]

AMOUNT_PATTERNS = [
    re.compile(r"(?:€|EUR|\$|USD|£|GBP|CHF)\s*[\d.,]+", _I),
    re.compile(r"[\d.,]+\s*(?:€|EUR|\$|USD|£|GBP|CHF)", _I),
    re.compile(r"(?:Total|Summe|Amount|Betrag|Gesamt)[:\s]+[\d.,]+", _I),
    re.compile(r"(?:Netto|Brutto|Net|Gross)[:\s]+[\d.,]+", _I),
]

INVOICE_KEYWORDS = [
    re.compile(r"\bInvoice\b", _I),
    re.compile(r"\bRechnung\b", _I),
    re.compile(r"\bReceipt\b", _I),
    re.compile(r"\bBeleg\b", _I),
    re.compile(r"\bQuittung\b", _I),
    re.compile(r"\bBon\b", _I),
    re.compile(r"\bTicket\b", _I),
    re.compile(r"\bBuchungsbestätigung\b", _I),
    re.compile(r"\bBooking\s*confirmation\b", _I),
    re.compile(r"\bOrder\s*confirmation\b", _I),
    re.compile(r"\bBestellbestätigung\b", _I),
    re.compile(r"\bZahlungsbestätigung\b", _I),
    re.compile(r"\bPayment\s*confirmation\b", _I),
    re.compile(r"\bFaktura\b", _I),
    re.compile(r"\bFacture\b", _I),
    re.compile(r"Invoice\s*(?:No\.?|Number|#)", _I),
    re.compile(r"Rechnungs(?:nummer|nr\.?)", _I),
    re.compile(r"\bKauf(?:beleg|quittung)\b", _I),
]

IBAN_PATTERNS = [
    re.compile(r"\bIBAN[:\s]*[A-Z]{2}\d{2}[A-Z0-9]{4,}", _I),
    # Bare IBAN: country code must be uppercase
    re.compile(r"\b[A-Z]{2}\d{2}[A-Z0-9]{4,30}\b"),
]

NON_INVOICE_PATTERNS = [
    re.compile(r"\bW-8BEN\b", _I),
    re.compile(r"\bW-9\b", _I),
    re.compile(r"\bSteuererklärung\b", _I),
    re.compile(r"\bTax\s*Return\b", _I),
    re.compile(r"\bAnnual\s*Report\b", _I),
    re.compile(r"\bJahresabschluss\b", _I),
    re.compile(r"\bGeschäftsbericht\b", _I),
    re.compile(r"\bVertrag\b", _I),
    re.compile(r"\bContract\b", _I),
    re.compile(r"\bAgreement\b", _I),
    re.compile(r"\bTerms\s*(?:and|&)\s*Conditions\b", _I),
    re.compile(r"\bAGB\b", _I),
    re.compile(r"\bPrivacy\s*Policy\b", _I),
    re.compile(r"\bDatenschutz", _I),
    re.compile(r"\bBank\s*Statement\b", _I),
    re.compile(r"\bKontoauszug\b", _I),
    re.compile(r"\bAccount\s*Statement\b", _I),
]


class TextClassification(BaseModel):
    """Result of text-based pre-classification.

    Attributes:
        is_likely_invoice: Verdict; uncertain results default to True
        confidence: high, medium, low or uncertain
        signals: Human-readable evidence
        has_extractable_text: Whether the PDF carried usable embedded text
        score: Raw score
        processing_time_ms: Wall time spent
    """

    is_likely_invoice: bool
    confidence: Confidence
    signals: list[str] = Field(default_factory=list)
    has_extractable_text: bool
    score: int = 0
    processing_time_ms: int = 0


def _count(text: str, patterns: list[re.Pattern[str]]) -> int:
    return sum(len(p.findall(text)) for p in patterns)


def classify_text(text: str) -> TextClassification:
    """Score already extracted text.

    Args:
        text: Embedded document text (at least MIN_TEXT_LENGTH chars)

    Returns:
        TextClassification with verdict, confidence and signals
    """
    signals: list[str] = []

    non_invoice = _count(text, NON_INVOICE_PATTERNS)
    currency = _count(text, CURRENCY_PATTERNS)
    vat = _count(text, VAT_PATTERNS)
    amounts = _count(text, AMOUNT_PATTERNS)
    keywords = _count(text, INVOICE_KEYWORDS)
    has_iban = any(p.search(text) for p in IBAN_PATTERNS)

    if non_invoice:
        signals.append(f"Non-invoice keywords: {non_invoice}")
    if currency:
        signals.append(f"Currency: {currency}")
    if vat:
        signals.append(f"VAT: {vat}")
    if amounts:
        signals.append(f"Amounts: {amounts}")
    if keywords:
        signals.append(f"Keywords: {keywords}")
    if has_iban:
        signals.append("Has IBAN")

    score = 0
    if keywords:
        score += 3
    if vat:
        score += 2
    if currency and amounts:
        score += 2
    if has_iban:
        score += 1
    if non_invoice >= 2:
        score -= 4
    elif non_invoice == 1:
        score -= 2

    if score >= 4:
        verdict, confidence = True, "high"
    elif score >= 2:
        verdict, confidence = True, "medium"
    elif score <= -2:
        verdict, confidence = False, "high"
    elif score < 0:
        verdict, confidence = False, "medium"
    else:
        verdict, confidence = True, "uncertain"

    signals.append(f"Score: {score}")
    return TextClassification(
        is_likely_invoice=verdict,
        confidence=confidence,
        signals=signals,
        has_extractable_text=True,
        score=score,
    )


def classify_by_text(
    content: bytes, mime_type: str, max_pages: int = DEFAULT_MAX_PAGES
) -> TextClassification:
    """Pre-classify a document from its embedded text.

    Args:
        content: Raw document bytes
        mime_type: Declared MIME type; only PDFs are examined
        max_pages: Leading pages to read

    Returns:
        TextClassification; "uncertain" for non-PDFs and PDFs without text
    """
    start = time.time()

    if not is_pdf(mime_type):
        return TextClassification(
            is_likely_invoice=True,
            confidence="uncertain",
            signals=["Not a PDF, cannot extract text"],
            has_extractable_text=False,
        )

    text = extract_pdf_text(content, max_pages=max_pages).strip()
    if len(text) <= MIN_TEXT_LENGTH:
        return TextClassification(
            is_likely_invoice=True,
            confidence="uncertain",
            signals=["No extractable text (possibly scanned/image-only)"],
            has_extractable_text=False,
            processing_time_ms=int((time.time() - start) * 1000),
        )

    result = classify_text(text)
    result.processing_time_ms = int((time.time() - start) * 1000)
    logger.debug(
        f"Text classification: invoice={result.is_likely_invoice} "
        f"confidence={result.confidence} signals={result.signals}"
    )
    return result


def should_use_text_classification(result: TextClassification) -> bool:
    """Whether a text verdict is strong enough to skip the model call."""
    return result.confidence == "high" and result.has_extractable_text
