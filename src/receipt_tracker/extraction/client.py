import base64
import json
import os
from typing import Any

from openai import OpenAI, OpenAIError
from pydantic import ValidationError as PydanticValidationError

from receipt_tracker.core import settings
from receipt_tracker.errors import ExtractionError
from receipt_tracker.logger import get_logger
from receipt_tracker.models import Category, ReceiptData

logger = get_logger(__name__)

PROMPT = """
Analyze the provided receipt image. Perform OCR and extract the following information:
- Transaction Name/Description: The merchant name or transaction description.
- Total Amount: The final amount paid.
- Transaction Date: The date of the transaction.
- Category: Classify the transaction based on the merchant.

Follow these rules strictly:
- If you cannot confidently determine a piece of information, set its value to null.
- If multiple dates are present, prioritize the primary transaction date.
- If the total amount is unclear, look for keywords like "Total," "Amount Due," or the largest numerical value that logically represents the total.
- Return the data in the specified JSON format.
"""

RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "transaction_name": {
            "type": ["string", "null"],
            "description": (
                "The primary name of the merchant or a brief description of the transaction "
                "(e.g., 'Starbucks', 'Monthly Subscription'). Null if not found."
            ),
        },
        "total_amount": {
            "type": ["number", "null"],
            "description": "The final amount of the transaction. Look for 'Total' or 'Amount Due'. Null if not found.",
        },
        "transaction_date": {
            "type": ["string", "null"],
            "description": (
                "The date the transaction occurred in YYYY-MM-DD format. "
                "Prioritize the primary transaction date. Null if not found."
            ),
        },
        "category": {
            "type": ["string", "null"],
            "enum": [*Category.values(), None],
            "description": "Category of the transaction from the allowed list. Null if unclear.",
        },
    },
    "required": ["transaction_name", "total_amount", "transaction_date", "category"],
    "additionalProperties": False,
}


def to_data_url(image: bytes | str, mime_type: str) -> str:
    """Build a data URL from raw bytes or an already base64-encoded payload."""
    if isinstance(image, bytes):
        payload = base64.b64encode(image).decode("ascii")
    else:
        payload = image.strip()
    return f"data:{mime_type};base64,{payload}"


def parse_receipt_json(text: str) -> ReceiptData:
    try:
        data = json.loads(text.strip())
    except json.JSONDecodeError as exc:
        raise ExtractionError(
            f"Response is not JSON: {exc}",
            user_message=ExtractionError.invalid_format_message,
        ) from exc

    if not isinstance(data, dict) or set(RESPONSE_SCHEMA["required"]) - data.keys():
        raise ExtractionError(
            "Response is missing receipt fields",
            user_message=ExtractionError.invalid_format_message,
        )
    try:
        return ReceiptData.model_validate(data)
    except PydanticValidationError as exc:
        raise ExtractionError(
            f"Response fields failed validation: {exc}",
            user_message=ExtractionError.invalid_format_message,
        ) from exc


class ReceiptExtractor:
    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ):
        self.client = OpenAI(
            api_key=api_key or os.getenv("OPENAI_API_KEY"),
            base_url=base_url or os.getenv("OPENAI_BASE_URL") or None,
        )
        self.model = model or os.getenv("OPENAI_MODEL") or settings.DEFAULT_OPENAI_MODEL

    def extract(self, image: bytes | str, mime_type: str) -> ReceiptData:
        """Run one extraction request for ``image``; no retries, no caching."""
        try:
            response = self.client.responses.create(
                model=self.model,
                input=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "input_text", "text": PROMPT},
                            {"type": "input_image", "image_url": to_data_url(image, mime_type)},
                        ],
                    }
                ],
                text={
                    "format": {
                        "type": "json_schema",
                        "name": "receipt",
                        "schema": RESPONSE_SCHEMA,
                        "strict": True,
                    }
                },
                temperature=0.0,
            )
        except OpenAIError as exc:
            logger.error("[SCAN] Extraction request failed: %s", exc)
            raise ExtractionError(f"Extraction request failed: {exc}") from exc

        output_text = self._extract_output_text(response)
        if output_text is None:
            logger.error("[SCAN] Extraction response had no text output.")
            raise ExtractionError(
                "Empty extraction response",
                user_message=ExtractionError.invalid_format_message,
            )

        try:
            return parse_receipt_json(output_text)
        except ExtractionError:
            logger.error("[SCAN] Failed to parse JSON response: %s", output_text[:200])
            raise

    @staticmethod
    def _extract_output_text(response: object) -> str | None:
        output_text = getattr(response, "output_text", None)
        if isinstance(output_text, str) and output_text:
            return output_text

        output = getattr(response, "output", None)
        if not output:
            return None

        parts: list[str] = []
        for item in output:
            for block in getattr(item, "content", None) or []:
                if getattr(block, "type", None) in {"output_text", "text"}:
                    text = getattr(block, "text", None)
                    if text:
                        parts.append(text)

        return "".join(parts) if parts else None
