"""Invoice extraction data models.

Shared by both provider clients, the orchestrator and the record store. Amounts
are integer minor units, dates are ISO dates, confidence is 0.0-1.0 at the
provider boundary.
"""

import datetime as dt
from typing import Literal

from pydantic import BaseModel, Field


class ExtractedEntity(BaseModel):
    """Issuer or recipient as extracted from the document (normalised)."""

    name: str | None = None
    vat_id: str | None = None
    address: str | None = None
    iban: str | None = None
    website: str | None = None

    def is_empty(self) -> bool:
        return not any((self.name, self.vat_id, self.address, self.iban, self.website))


class ExtractedEntityRaw(BaseModel):
    """Literal on-document text of an entity's fields, used for highlighting."""

    name: str | None = None
    vat_id: str | None = None
    address: str | None = None
    iban: str | None = None
    website: str | None = None


class ExtractedRaw(BaseModel):
    """Literal on-document text for each extracted field."""

    date: str | None = None
    amount: str | None = None
    currency: str | None = None
    vat_percent: str | None = None
    partner: str | None = None
    vat_id: str | None = None
    iban: str | None = None
    address: str | None = None
    website: str | None = None
    issuer: ExtractedEntityRaw | None = None
    recipient: ExtractedEntityRaw | None = None


class AdditionalField(BaseModel):
    """Free-form labelled value such as invoice number or due date."""

    label: str
    value: str
    raw_value: str | None = None


class ExtractedFields(BaseModel):
    """Structured fields parsed from model output."""

    date: dt.date | None = None
    amount: int | None = Field(None, description="Gross amount in minor units")
    currency: str | None = None
    vat_percent: int | None = Field(None, ge=0, le=100)
    issuer: ExtractedEntity | None = None
    recipient: ExtractedEntity | None = None
    raw: ExtractedRaw = Field(default_factory=ExtractedRaw)
    additional_fields: list[AdditionalField] = Field(default_factory=list)
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class Vertex(BaseModel):
    """Point on a page, normalised to 0..1."""

    x: float
    y: float


class BoundingBox(BaseModel):
    """Axis-aligned box on a page with normalised vertices."""

    vertices: list[Vertex]
    page_index: int = 0


class LayoutBlock(BaseModel):
    """A block of OCR text with its position."""

    text: str
    bounding_box: BoundingBox
    confidence: float = 1.0


class FieldLocation(BaseModel):
    """Where an extracted field value appears on the page."""

    field: Literal["date", "amount", "vat_percent", "partner"]
    value: str
    bounding_box: BoundingBox | None = None
    confidence: float = 0.5


class TokenUsage(BaseModel):
    """Token accounting for one model call."""

    model: str
    input_tokens: int = 0
    output_tokens: int = 0


class ProviderExtraction(BaseModel):
    """Provider contract output: text, layout, fields and token usage."""

    text: str
    layout_blocks: list[LayoutBlock] = Field(default_factory=list)
    fields: ExtractedFields
    field_locations: list[FieldLocation] = Field(default_factory=list)
    token_usage: TokenUsage
    provider: str


class ClassificationResult(BaseModel):
    """Invoice / not-invoice verdict from the classification call."""

    is_invoice: bool
    reason: str | None = None
    token_usage: TokenUsage | None = None
