import base64
import json
from collections.abc import Generator
from unittest.mock import MagicMock, patch

import pytest
from openai import OpenAIError

from receipt_tracker.errors import ExtractionError
from receipt_tracker.extraction.client import RESPONSE_SCHEMA, ReceiptExtractor, parse_receipt_json


@pytest.fixture
def mock_openai_client() -> Generator[MagicMock, None, None]:
    with patch("receipt_tracker.extraction.client.OpenAI") as mock:
        yield mock


def _response(text: str) -> MagicMock:
    response = MagicMock()
    response.output_text = text
    return response


def test_extract_returns_receipt(mock_openai_client: MagicMock) -> None:
    mock_instance = mock_openai_client.return_value
    mock_instance.responses.create.return_value = _response(json.dumps({
        "transaction_name": "Starbucks",
        "total_amount": 5.75,
        "transaction_date": "2024-03-02",
        "category": "Food & Drink",
    }))

    extractor = ReceiptExtractor(api_key="sk-fake", model="gpt-4o-mini")
    receipt = extractor.extract(b"\x89PNG", "image/png")

    assert receipt.transaction_name == "Starbucks"
    assert receipt.total_amount == 5.75
    assert receipt.transaction_date == "2024-03-02"
    assert receipt.category == "Food & Drink"
    mock_instance.responses.create.assert_called_once()


def test_extract_sends_image_and_strict_schema(mock_openai_client: MagicMock) -> None:
    mock_instance = mock_openai_client.return_value
    mock_instance.responses.create.return_value = _response(
        '{"transaction_name": null, "total_amount": null, "transaction_date": null, "category": null}'
    )

    extractor = ReceiptExtractor(api_key="sk-fake", model="gpt-4o-mini")
    receipt = extractor.extract(b"abc", "image/jpeg")

    kwargs = mock_instance.responses.create.call_args.kwargs
    content = kwargs["input"][0]["content"]
    expected_url = "data:image/jpeg;base64," + base64.b64encode(b"abc").decode("ascii")
    assert content[1] == {"type": "input_image", "image_url": expected_url}
    fmt = kwargs["text"]["format"]
    assert fmt["strict"] is True
    assert fmt["schema"]["required"] == [
        "transaction_name",
        "total_amount",
        "transaction_date",
        "category",
    ]
    assert receipt.model_dump() == {
        "transaction_name": None,
        "total_amount": None,
        "transaction_date": None,
        "category": None,
    }


def test_extract_accepts_pre_encoded_payload(mock_openai_client: MagicMock) -> None:
    mock_instance = mock_openai_client.return_value
    mock_instance.responses.create.return_value = _response(
        '{"transaction_name": "Shell", "total_amount": 40, "transaction_date": null, "category": "Transportation"}'
    )

    extractor = ReceiptExtractor(api_key="sk-fake")
    extractor.extract("QUJD", "image/webp")

    content = mock_instance.responses.create.call_args.kwargs["input"][0]["content"]
    assert content[1]["image_url"] == "data:image/webp;base64,QUJD"


def test_network_failure_has_retry_message(mock_openai_client: MagicMock) -> None:
    mock_openai_client.return_value.responses.create.side_effect = OpenAIError("connection reset")

    extractor = ReceiptExtractor(api_key="sk-fake")
    with pytest.raises(ExtractionError) as exc_info:
        extractor.extract(b"abc", "image/png")

    assert exc_info.value.user_message == "Failed to analyze the receipt. Please try again."
    assert mock_openai_client.return_value.responses.create.call_count == 1


def test_unparseable_response_has_format_message(mock_openai_client: MagicMock) -> None:
    mock_openai_client.return_value.responses.create.return_value = _response("Sorry, I can't read that.")

    extractor = ReceiptExtractor(api_key="sk-fake")
    with pytest.raises(ExtractionError) as exc_info:
        extractor.extract(b"abc", "image/png")

    assert exc_info.value.user_message == "Received an invalid format from the API."


def test_parse_rejects_missing_keys_and_negative_amounts() -> None:
    with pytest.raises(ExtractionError):
        parse_receipt_json('{"transaction_name": "Cafe"}')
    with pytest.raises(ExtractionError):
        parse_receipt_json(
            '{"transaction_name": "Cafe", "total_amount": -3, "transaction_date": null, "category": null}'
        )
    with pytest.raises(ExtractionError):
        parse_receipt_json("[1, 2]")


def test_schema_restricts_category_to_known_values() -> None:
    enum = RESPONSE_SCHEMA["properties"]["category"]["enum"]
    assert "Rent/Mortgage" in enum
    assert None in enum
    assert len(enum) == 11
