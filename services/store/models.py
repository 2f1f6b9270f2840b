"""Persistent record models for documents, partners, transactions and categories.

Field names follow the persisted document layout. Every pipeline phase owns a
group of fields and writes only that group.
"""

import datetime as dt
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from services.extraction.schema import (
    AdditionalField,
    ExtractedEntity,
    ExtractedRaw,
    FieldLocation,
)

InvoiceDirection = Literal["incoming", "outgoing", "unknown"]
MatchedUserAccount = Literal["issuer", "recipient"]
PartnerType = Literal["global", "user"]
MatchedBy = Literal["manual", "auto", "suggestion"]


def utcnow() -> datetime:
    """Timezone-aware current time for persisted timestamps."""
    return datetime.now(timezone.utc)


class PartnerSuggestion(BaseModel):
    """Candidate partner for a document or transaction."""

    partner_id: str
    partner_type: PartnerType
    confidence: int = Field(ge=0, le=100)
    source: str


class TransactionSuggestion(BaseModel):
    """Candidate bank transaction for a document."""

    transaction_id: str
    confidence: int = Field(ge=0, le=100)
    match_sources: list[str] = Field(default_factory=list)


class CategorySuggestion(BaseModel):
    """Candidate no-receipt category for a transaction."""

    category_id: str
    confidence: int = Field(ge=0, le=100)
    source: Literal["partner", "pattern", "partner+pattern"]


class Document(BaseModel):
    """One uploaded file and everything the pipeline has learned about it."""

    id: str
    owner_id: str
    storage_path: str | None = None
    size: int | None = None
    mime_type: str = "application/pdf"
    content_hash: str | None = None
    file_name: str | None = None

    # Pipeline state
    classification_complete: bool = False
    classification_completed_at: datetime | None = None
    extraction_complete: bool = False
    extraction_completed_at: datetime | None = None
    partner_match_complete: bool = False
    partner_matched_at: datetime | None = None
    transaction_match_complete: bool = False
    transaction_matched_at: datetime | None = None

    # Classification outcome
    is_not_invoice: bool | None = None
    not_invoice_reason: str | None = None
    marked_as_invoice_by_user: bool = False

    # Extracted scalar fields
    extracted_date: dt.date | None = None
    extracted_amount: int | None = None
    extracted_currency: str | None = None
    extracted_vat_percent: int | None = None
    extracted_text: str | None = None
    extraction_confidence: int | None = None
    extraction_provider: str | None = None
    extraction_error: str | None = None

    # Extracted entities
    extracted_issuer: ExtractedEntity | None = None
    extracted_recipient: ExtractedEntity | None = None
    extracted_raw: ExtractedRaw | None = None
    extracted_fields: list[AdditionalField] | None = None
    extracted_field_locations: list[FieldLocation] | None = None

    # Denormalised counterparty
    extracted_partner: str | None = None
    extracted_vat_id: str | None = None
    extracted_iban: str | None = None
    extracted_address: str | None = None
    extracted_website: str | None = None

    # Relationship
    invoice_direction: InvoiceDirection | None = None
    matched_user_account: MatchedUserAccount | None = None

    # Matching outputs
    partner_id: str | None = None
    partner_type: PartnerType | None = None
    partner_matched_by: MatchedBy | None = None
    partner_match_confidence: int | None = None
    partner_suggestions: list[PartnerSuggestion] = Field(default_factory=list)
    transaction_ids: list[str] = Field(default_factory=list)
    transaction_matched_by: MatchedBy | None = None
    transaction_suggestions: list[TransactionSuggestion] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class UserIdentity(BaseModel):
    """The owner's own business identity, used to tell issuer from recipient."""

    owner_id: str
    company_name: str | None = None
    name: str | None = None
    aliases: list[str] = Field(default_factory=list)
    vat_ids: list[str] = Field(default_factory=list)
    ibans: list[str] = Field(default_factory=list)


class BankSource(BaseModel):
    """A connected or declared bank account."""

    id: str
    owner_id: str
    iban: str | None = None
    is_active: bool = True


class Transaction(BaseModel):
    """One bank transaction in minor currency units."""

    id: str
    owner_id: str
    source_id: str | None = None
    date: dt.date
    amount: int
    currency: str = "EUR"
    name: str = ""
    partner: str | None = None
    reference: str | None = None
    partner_iban: str | None = None

    partner_id: str | None = None
    partner_type: PartnerType | None = None
    partner_matched_by: MatchedBy | None = None
    partner_suggestions: list[PartnerSuggestion] = Field(default_factory=list)

    file_ids: list[str] = Field(default_factory=list)
    no_receipt_category_id: str | None = None
    no_receipt_category_matched_by: MatchedBy | None = None
    category_suggestions: list[CategorySuggestion] = Field(default_factory=list)

    updated_at: datetime = Field(default_factory=utcnow)


class GlobalPartner(BaseModel):
    """Shared reference partner visible to every owner."""

    id: str
    name: str
    aliases: list[str] = Field(default_factory=list)
    address: str | None = None
    country: str | None = None
    vat_id: str | None = None
    ibans: list[str] = Field(default_factory=list)
    website: str | None = None
    is_active: bool = True


class Partner(BaseModel):
    """Owner-private partner, optionally copied from a global partner."""

    id: str
    owner_id: str
    name: str
    aliases: list[str] = Field(default_factory=list)
    address: str | None = None
    country: str | None = None
    vat_id: str | None = None
    ibans: list[str] = Field(default_factory=list)
    website: str | None = None
    is_active: bool = True
    global_partner_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class CategoryPattern(BaseModel):
    """Learned glob rule, e.g. "*netflix*"."""

    pattern: str
    confidence: int = Field(ge=0, le=100)


class Category(BaseModel):
    """No-receipt category for transactions that will never get a receipt."""

    id: str
    owner_id: str
    name: str
    template_id: str | None = None
    matched_partner_ids: list[str] = Field(default_factory=list)
    learned_patterns: list[CategoryPattern] = Field(default_factory=list)
    manual_removals: list[str] = Field(default_factory=list)
    transaction_count: int = 0
    is_active: bool = True


class UsageRecord(BaseModel):
    """One AI call's token consumption."""

    owner_id: str
    phase: str
    model: str
    input_tokens: int
    output_tokens: int
    document_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
