import base64
import json
import os
from typing import Any

from openai import OpenAI

from household_ledger.core import settings
from household_ledger.errors import ConfigurationError
from household_ledger.logger import get_logger

logger = get_logger(__name__)

RECEIPT_PROMPT = """Extract all line items from this receipt. For each item return:
- name: the item description
- amount: the amount (positive number)

Also extract: merchant name, date, subtotal, tax, total.

Then categorize each line item into one of these categories: {categories}.

Return JSON: {{
  "merchant": "string",
  "date": "string",
  "subtotal": number,
  "tax": number,
  "total": number,
  "line_items": [{{ "name": "string", "amount": number, "category": "exact category name", "confidence": 0.0-1.0 }}]
}}

Use the exact category names provided. Return ONLY valid JSON."""


def _document_part(content: bytes, media_type: str, filename: str) -> dict[str, Any]:
    encoded = base64.b64encode(content).decode("ascii")
    data_url = f"data:{media_type};base64,{encoded}"
    if media_type == "application/pdf":
        return {"type": "file", "file": {"filename": filename, "file_data": data_url}}
    return {"type": "image_url", "image_url": {"url": data_url}}


class ReceiptExtractor:
    """Sends one receipt image or PDF to a vision model and returns its raw JSON answer."""

    def __init__(self, api_key: str | None = None, model: str | None = None, base_url: str | None = None):
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self.model = model or os.getenv("OPENAI_VISION_MODEL") or settings.DEFAULT_OPENAI_VISION_MODEL
        self.base_url = base_url or os.getenv("OPENAI_BASE_URL") or None
        self.client = (
            OpenAI(api_key=self.api_key, base_url=self.base_url, timeout=settings.external_timeout(), max_retries=1)
            if self.api_key
            else None
        )

    def extract(
        self,
        content: bytes,
        media_type: str,
        category_names: list[str],
        filename: str = "receipt",
    ) -> dict[str, Any]:
        if self.client is None:
            raise ConfigurationError("OPENAI_API_KEY is not configured")

        response = self.client.chat.completions.create(
            model=self.model,
            temperature=0,
            max_tokens=2000,
            response_format={"type": "json_object"},
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": RECEIPT_PROMPT.format(categories=", ".join(category_names))},
                        _document_part(content, media_type, filename),
                    ],
                }
            ],
        )
        text = response.choices[0].message.content if response.choices else None
        if not text:
            raise ValueError("vision model returned no content")
        payload = json.loads(text)
        if not isinstance(payload, dict):
            raise ValueError("vision model did not return a JSON object")
        logger.debug("[RECEIPT] Vision model returned %s line item(s).", len(payload.get("line_items") or []))
        return payload
