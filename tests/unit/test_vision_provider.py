"""Unit tests for the vision provider and the shared OpenAI client.

Tests cover:
- Classification and extraction with a mocked API
- First-page cut for long PDFs
- Retry on transient errors and failure after max retries
- Missing API key
"""

import base64
import json
from unittest.mock import MagicMock, patch

import httpx
import openai
import pytest
from tenacity import wait_none

from services.extraction.base import ExtractionOptions
from services.extraction.openai_client import OpenAIChatClient
from services.extraction.vision_provider import VisionParseProvider, document_part
from services.shared.config import Settings
from services.shared.errors import EmptyDocumentError, ExtractionProviderError

EXTRACTION_OUTPUT = {
    "rawText": "Rechnung\nOffice Supplies GmbH\nGesamt 149,99 EUR",
    "extracted": {
        "date": "2024-03-15",
        "amount": 14999,
        "currency": "EUR",
        "vatPercent": 20,
        "issuer": {"name": "Office Supplies GmbH", "vatId": "ATU99999999"},
        "recipient": {"name": "Muster Consulting"},
        "confidence": 0.9,
    },
    "fieldBoxes": [{"field": "amount", "value": "149,99", "box": [0.6, 0.8, 0.7, 0.82]}],
}


def _response(content: str, prompt_tokens: int = 1000, completion_tokens: int = 200) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.usage.prompt_tokens = prompt_tokens
    response.usage.completion_tokens = completion_tokens
    return response


def _connection_error() -> openai.APIConnectionError:
    return openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com"))


@pytest.fixture
def provider() -> VisionParseProvider:
    return VisionParseProvider(Settings(_env_file=None))


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch: pytest.MonkeyPatch) -> None:
    """Skip tenacity backoff sleeps."""
    monkeypatch.setattr(OpenAIChatClient._complete_with_retry.retry, "wait", wait_none())


def test_document_part_pdf() -> None:
    part = document_part(b"%PDF", "application/pdf")

    assert part["type"] == "file"
    assert part["file"]["file_data"] == "data:application/pdf;base64," + base64.b64encode(
        b"%PDF"
    ).decode("ascii")


def test_document_part_image() -> None:
    assert document_part(b"img", "image/png")["image_url"]["url"].startswith(
        "data:image/png;base64,"
    )


class TestClassify:
    """Invoice classification."""

    @patch("services.extraction.openai_client.OpenAI")
    @patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
    def test_not_invoice(self, mock_openai_class: MagicMock, provider) -> None:
        mock_client = mock_openai_class.return_value
        mock_client.chat.completions.create.return_value = _response(
            '{"isInvoice": false, "reason": "Bank statement"}', 800, 20
        )

        result = provider.classify(b"%PDF", "application/pdf")

        assert result.is_invoice is False
        assert result.reason == "Bank statement"
        assert result.token_usage.model == "gpt-4o-mini"
        assert result.token_usage.input_tokens == 800
        kwargs = mock_client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["temperature"] == 0

    @patch("services.extraction.vision_provider.first_page_only", return_value=b"page-1")
    @patch("services.extraction.vision_provider.count_pages", return_value=5)
    @patch("services.extraction.openai_client.OpenAI")
    @patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
    def test_long_pdf_cut_to_first_page(
        self, mock_openai_class: MagicMock, _count, mock_first_page, provider
    ) -> None:
        """Should send only the first page of PDFs with more than two pages."""
        mock_client = mock_openai_class.return_value
        mock_client.chat.completions.create.return_value = _response('{"isInvoice": true}')

        provider.classify(b"%PDF-long", "application/pdf")

        mock_first_page.assert_called_once_with(b"%PDF-long")
        messages = mock_client.chat.completions.create.call_args.kwargs["messages"]
        file_data = messages[1]["content"][0]["file"]["file_data"]
        assert file_data.endswith(base64.b64encode(b"page-1").decode("ascii"))

    @patch("services.extraction.openai_client.OpenAI")
    @patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
    def test_malformed_verdict(self, mock_openai_class: MagicMock, provider) -> None:
        mock_openai_class.return_value.chat.completions.create.return_value = _response(
            '{"verdict": "invoice"}'
        )

        with pytest.raises(ExtractionProviderError):
            provider.classify(b"img", "image/png")


class TestExtract:
    """Vision extraction."""

    @patch("services.extraction.openai_client.OpenAI")
    @patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
    def test_success(self, mock_openai_class: MagicMock, provider) -> None:
        mock_client = mock_openai_class.return_value
        mock_client.chat.completions.create.return_value = _response(
            json.dumps(EXTRACTION_OUTPUT)
        )

        result = provider.extract(b"%PDF", "application/pdf")

        assert result.provider == "vision"
        assert result.text.startswith("Rechnung")
        assert result.fields.amount == 14999
        assert result.fields.issuer.name == "Office Supplies GmbH"
        assert result.layout_blocks == []
        assert result.field_locations[0].field == "amount"
        assert result.token_usage.output_tokens == 200

    @patch("services.extraction.openai_client.OpenAI")
    @patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
    def test_model_override(self, mock_openai_class: MagicMock, provider) -> None:
        mock_client = mock_openai_class.return_value
        mock_client.chat.completions.create.return_value = _response(
            json.dumps(EXTRACTION_OUTPUT)
        )

        result = provider.extract(b"%PDF", "application/pdf", ExtractionOptions(model="gpt-4o"))

        assert mock_client.chat.completions.create.call_args.kwargs["model"] == "gpt-4o"
        assert result.token_usage.model == "gpt-4o"

    @patch("services.extraction.openai_client.OpenAI")
    @patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
    def test_empty_document(self, mock_openai_class: MagicMock, provider) -> None:
        """Should raise when the model saw nothing at all."""
        mock_openai_class.return_value.chat.completions.create.return_value = _response(
            json.dumps({"rawText": "", "extracted": {}})
        )

        with pytest.raises(EmptyDocumentError):
            provider.extract(b"img", "image/jpeg")


class TestOpenAIChatClient:
    """Retry and error handling shared by both providers."""

    @patch.dict("os.environ", {}, clear=True)
    def test_missing_api_key(self, provider) -> None:
        with pytest.raises(ExtractionProviderError, match="OPENAI_API_KEY"):
            provider.classify(b"img", "image/png")
        assert provider.is_available() is False

    @patch("services.extraction.openai_client.OpenAI")
    @patch.dict("os.environ", {}, clear=True)
    def test_per_call_api_key(self, mock_openai_class: MagicMock, provider) -> None:
        """Should accept a key passed with the call."""
        mock_openai_class.return_value.chat.completions.create.return_value = _response(
            '{"isInvoice": true}'
        )

        provider.classify(b"img", "image/png", ExtractionOptions(api_key="sk-owner"))

        mock_openai_class.assert_called_with(api_key="sk-owner")

    @patch("services.extraction.openai_client.OpenAI")
    @patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
    def test_retry_on_transient_error(self, mock_openai_class: MagicMock, provider) -> None:
        """Should retry a connection error and succeed."""
        mock_client = mock_openai_class.return_value
        mock_client.chat.completions.create.side_effect = [
            _connection_error(),
            _response('{"isInvoice": true}'),
        ]

        result = provider.classify(b"img", "image/png")

        assert result.is_invoice is True
        assert mock_client.chat.completions.create.call_count == 2

    @patch("services.extraction.openai_client.OpenAI")
    @patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
    def test_fails_after_max_retries(self, mock_openai_class: MagicMock, provider) -> None:
        mock_client = mock_openai_class.return_value
        mock_client.chat.completions.create.side_effect = _connection_error()

        with pytest.raises(ExtractionProviderError, match="OpenAI request failed"):
            provider.classify(b"img", "image/png")

        assert mock_client.chat.completions.create.call_count == 3

    @patch("services.extraction.openai_client.OpenAI")
    @patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
    def test_no_choices(self, mock_openai_class: MagicMock, provider) -> None:
        response = _response("{}")
        response.choices = []
        mock_openai_class.return_value.chat.completions.create.return_value = response

        with pytest.raises(ExtractionProviderError, match="No choices"):
            provider.classify(b"img", "image/png")
