"""Parse the JSON envelope returned by the language models.

Malformed output is a hard failure: there is no JSON repair and no silent
coercion of a broken envelope into an empty result.
"""

import json
import logging
from typing import Any

from pydantic import ValidationError

from services.extraction.schema import (
    AdditionalField,
    BoundingBox,
    ClassificationResult,
    ExtractedEntity,
    ExtractedEntityRaw,
    ExtractedFields,
    ExtractedRaw,
    FieldLocation,
    TokenUsage,
    Vertex,
)
from services.shared.errors import ExtractionProviderError
from services.shared.normalize import (
    normalize_currency,
    normalize_iban,
    normalize_vat_id,
    normalize_website,
    parse_amount_minor,
    parse_date,
    parse_percent,
)

logger = logging.getLogger(__name__)

_ENTITY_KEYS = {
    "name": "name",
    "vatId": "vat_id",
    "address": "address",
    "iban": "iban",
    "website": "website",
}
_BOX_FIELDS = {
    "date": "date",
    "amount": "amount",
    "vatPercent": "vat_percent",
    "partner": "partner",
}


def load_json_envelope(content: str | None, provider: str) -> dict[str, Any]:
    """Decode a model response into a JSON object.

    Markdown code fences around the object are tolerated.

    Raises:
        ExtractionProviderError: If the content is empty or not a JSON object
    """
    if not content or not content.strip():
        raise ExtractionProviderError("Empty response from model", provider=provider)

    text = content.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]

    try:
        data = json.loads(text.strip())
    except json.JSONDecodeError as e:
        logger.error(f"Unparsable model output from {provider}: {text[:200]!r}")
        raise ExtractionProviderError(
            f"Model returned invalid JSON: {e}", provider=provider
        ) from e

    if not isinstance(data, dict):
        raise ExtractionProviderError("Model output is not a JSON object", provider=provider)
    return data


def parse_classification(
    data: dict[str, Any], provider: str, usage: TokenUsage | None = None
) -> ClassificationResult:
    """Build a ClassificationResult from {"isInvoice", "reason"}."""
    if not isinstance(data.get("isInvoice"), bool):
        raise ExtractionProviderError(
            "Classification output is missing boolean 'isInvoice'", provider=provider
        )
    is_invoice = data["isInvoice"]
    reason = data.get("reason") or None
    return ClassificationResult(
        is_invoice=is_invoice,
        reason=None if is_invoice else reason,
        token_usage=usage,
    )


def _model_amount(value: Any) -> int | None:
    # The prompt asks for cents; an amount with a fractional part is in major units
    if isinstance(value, float) and not value.is_integer():
        return parse_amount_minor(value)
    if isinstance(value, float):
        return int(value)
    return parse_amount_minor(value)


def _entity(raw: Any) -> ExtractedEntity | None:
    if not isinstance(raw, dict):
        return None
    values = {field: raw.get(key) or None for key, field in _ENTITY_KEYS.items()}
    entity = ExtractedEntity(
        name=values["name"],
        vat_id=normalize_vat_id(values["vat_id"]),
        address=values["address"],
        iban=normalize_iban(values["iban"]),
        website=normalize_website(values["website"]),
    )
    return None if entity.is_empty() else entity


def _entity_raw(raw: Any) -> ExtractedEntityRaw | None:
    if not isinstance(raw, dict):
        return None
    return ExtractedEntityRaw(
        **{field: raw.get(key) or None for key, field in _ENTITY_KEYS.items()}
    )


def _confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.5
    return min(1.0, max(0.0, float(value)))


def parse_extraction(data: dict[str, Any], provider: str) -> tuple[str, ExtractedFields]:
    """Map the extraction envelope onto ExtractedFields.

    Args:
        data: Decoded envelope with "rawText", "extracted", "additionalFields"
        provider: Provider name for error attribution

    Returns:
        Tuple of (raw document text, extracted fields)

    Raises:
        ExtractionProviderError: If the "extracted" object is missing
    """
    extracted = data.get("extracted")
    if not isinstance(extracted, dict):
        raise ExtractionProviderError(
            "Extraction output is missing the 'extracted' object", provider=provider
        )

    issuer = _entity(extracted.get("issuer"))
    recipient = _entity(extracted.get("recipient"))
    issuer_raw = _entity_raw(extracted.get("issuer_raw"))
    recipient_raw = _entity_raw(extracted.get("recipient_raw"))

    raw = ExtractedRaw(
        date=extracted.get("date_raw") or None,
        amount=extracted.get("amount_raw") or None,
        currency=extracted.get("currency") or None,
        vat_percent=extracted.get("vatPercent_raw") or None,
        issuer=issuer_raw,
        recipient=recipient_raw,
    )

    additional_fields = [
        AdditionalField(
            label=str(item["label"]),
            value=str(item["value"]),
            raw_value=str(item.get("rawValue") or item["value"]),
        )
        for item in data.get("additionalFields") or []
        if isinstance(item, dict) and item.get("label") and item.get("value")
    ]

    try:
        fields = ExtractedFields(
            date=parse_date(extracted.get("date")),
            amount=_model_amount(extracted.get("amount")),
            currency=normalize_currency(extracted.get("currency")),
            vat_percent=parse_percent(extracted.get("vatPercent")),
            issuer=issuer,
            recipient=recipient,
            raw=raw,
            additional_fields=additional_fields,
            confidence=_confidence(extracted.get("confidence")),
        )
    except ValidationError as e:
        raise ExtractionProviderError(
            f"Extraction output failed validation: {e}", provider=provider
        ) from e

    if additional_fields:
        logger.debug(f"Extracted {len(additional_fields)} additional fields")

    return str(data.get("rawText") or ""), fields


def parse_field_boxes(data: dict[str, Any]) -> list[FieldLocation]:
    """Read optional model-supplied field boxes; malformed entries are skipped."""
    locations: list[FieldLocation] = []
    for item in data.get("fieldBoxes") or []:
        if not isinstance(item, dict):
            continue
        field = _BOX_FIELDS.get(str(item.get("field")))
        box = item.get("box")
        if field is None or not item.get("value") or not isinstance(box, list) or len(box) != 4:
            continue
        try:
            x_min, y_min, x_max, y_max = (float(v) for v in box)
        except (TypeError, ValueError):
            continue
        locations.append(
            FieldLocation(
                field=field,
                value=str(item["value"]),
                bounding_box=BoundingBox(
                    vertices=[
                        Vertex(x=x_min, y=y_min),
                        Vertex(x=x_max, y=y_min),
                        Vertex(x=x_max, y=y_max),
                        Vertex(x=x_min, y=y_max),
                    ],
                    page_index=int(item.get("page") or 0),
                ),
                confidence=0.9,
            )
        )
    return locations
