"""Unit tests for model output parsing."""

from datetime import date

import pytest

from services.extraction.parsing import (
    load_json_envelope,
    parse_classification,
    parse_extraction,
    parse_field_boxes,
)
from services.extraction.schema import TokenUsage
from services.shared.errors import ExtractionProviderError


def _envelope(**extracted) -> dict:
    base = {
        "date": "15.03.2024",
        "amount": 14999,
        "currency": "€",
        "vatPercent": 20,
        "issuer": {
            "name": "Office Supplies GmbH",
            "vatId": "ATU 999 999 99",
            "iban": "AT61 1904 3002 3457 3201",
            "website": "https://www.office-supplies.at",
        },
        "recipient": {"name": "Muster Consulting"},
        "date_raw": "15.03.2024",
        "amount_raw": "€ 149,99",
        "confidence": 0.91,
    }
    base.update(extracted)
    return {"rawText": "Rechnung ...", "extracted": base}


class TestLoadJsonEnvelope:
    """Decoding raw model content."""

    def test_plain_json(self) -> None:
        assert load_json_envelope('{"isInvoice": true}', "vision") == {"isInvoice": True}

    def test_code_fences(self) -> None:
        """Should tolerate markdown fences around the object."""
        content = '```json\n{"isInvoice": false}\n```'
        assert load_json_envelope(content, "vision") == {"isInvoice": False}

    @pytest.mark.parametrize("content", [None, "", "   ", "not json", "[1, 2]"])
    def test_invalid(self, content) -> None:
        with pytest.raises(ExtractionProviderError) as exc_info:
            load_json_envelope(content, "vision")
        assert exc_info.value.provider == "vision"


class TestParseClassification:
    """Classification verdicts."""

    def test_invoice(self) -> None:
        usage = TokenUsage(model="gpt-4o-mini", input_tokens=10, output_tokens=2)

        result = parse_classification({"isInvoice": True, "reason": "ignored"}, "vision", usage)

        assert result.is_invoice is True
        assert result.reason is None
        assert result.token_usage == usage

    def test_not_invoice_keeps_reason(self) -> None:
        result = parse_classification({"isInvoice": False, "reason": "Bank statement"}, "vision")

        assert result.is_invoice is False
        assert result.reason == "Bank statement"

    @pytest.mark.parametrize("data", [{}, {"isInvoice": "yes"}, {"isInvoice": 1}])
    def test_missing_boolean(self, data) -> None:
        """Should fail instead of guessing a verdict."""
        with pytest.raises(ExtractionProviderError):
            parse_classification(data, "vision")


class TestParseExtraction:
    """Extraction envelope mapping."""

    def test_full_envelope(self) -> None:
        text, fields = parse_extraction(_envelope(), "vision")

        assert text == "Rechnung ..."
        assert fields.date == date(2024, 3, 15)
        assert fields.amount == 14999
        assert fields.currency == "EUR"
        assert fields.vat_percent == 20
        assert fields.confidence == 0.91
        assert fields.issuer.vat_id == "ATU99999999"
        assert fields.issuer.iban == "AT611904300234573201"
        assert fields.issuer.website == "office-supplies.at"
        assert fields.recipient.name == "Muster Consulting"
        assert fields.raw.amount == "€ 149,99"

    @pytest.mark.parametrize(
        ("amount", "expected"),
        [(14999, 14999), (149.99, 14999), (14999.0, 14999), ("149,99", 14999)],
    )
    def test_amount_units(self, amount, expected: int) -> None:
        """Should read integers as cents and fractional floats as major units."""
        _, fields = parse_extraction(_envelope(amount=amount), "vision")
        assert fields.amount == expected

    def test_empty_entities_dropped(self) -> None:
        _, fields = parse_extraction(_envelope(recipient={"name": "", "vatId": None}), "vision")
        assert fields.recipient is None

    def test_confidence_clamped(self) -> None:
        _, fields = parse_extraction(_envelope(confidence=3), "vision")
        assert fields.confidence == 1.0

        _, fields = parse_extraction(_envelope(confidence="high"), "vision")
        assert fields.confidence == 0.5

    def test_additional_fields(self) -> None:
        data = _envelope()
        data["additionalFields"] = [
            {"label": "Invoice number", "value": "RE-2024-001"},
            {"label": "Due date", "value": "2024-04-15", "rawValue": "15.04.2024"},
            {"label": "", "value": "dropped"},
        ]

        _, fields = parse_extraction(data, "vision")

        assert [f.label for f in fields.additional_fields] == ["Invoice number", "Due date"]
        assert fields.additional_fields[0].raw_value == "RE-2024-001"
        assert fields.additional_fields[1].raw_value == "15.04.2024"

    def test_missing_extracted(self) -> None:
        with pytest.raises(ExtractionProviderError):
            parse_extraction({"rawText": "..."}, "ocr")


class TestParseFieldBoxes:
    """Optional model-supplied boxes."""

    def test_valid_and_malformed(self) -> None:
        data = {
            "fieldBoxes": [
                {"field": "amount", "value": "149,99", "box": [0.1, 0.2, 0.3, 0.25], "page": 1},
                {"field": "unknown", "value": "x", "box": [0, 0, 1, 1]},
                {"field": "date", "value": "15.03.2024", "box": [0, 0, 1]},
                {"field": "date", "value": "15.03.2024", "box": ["a", 0, 1, 1]},
                "garbage",
            ]
        }

        locations = parse_field_boxes(data)

        assert len(locations) == 1
        location = locations[0]
        assert location.field == "amount"
        assert location.confidence == 0.9
        assert location.bounding_box.page_index == 1
        assert location.bounding_box.vertices[2].x == 0.3

    def test_absent(self) -> None:
        assert parse_field_boxes({}) == []
