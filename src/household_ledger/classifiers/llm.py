import json
import os
from typing import Any

from openai import OpenAI

from household_ledger.core import settings
from household_ledger.ledger.classification import ClassificationItem
from household_ledger.logger import get_logger
from household_ledger.models import CategorizationResult, Category

from .base import BatchClassifier

logger = get_logger(__name__)

BATCH_PROMPT = """You are a financial transaction categorizer. Classify each transaction into exactly one of these categories: {categories}.

For each transaction, return a JSON object with:
- "results": an array of objects with "id" (the transaction id), "category" (exact category name from the list), and "confidence" (0.0-1.0, how confident you are).

Transactions to classify:
{transactions}

Return ONLY valid JSON. Use the exact category names provided."""


def _clamp_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    return min(max(confidence, 0.0), 1.0)


class LLMBatchClassifier(BatchClassifier):
    """Categorizes a whole batch per chat completion.

    Errors propagate so the caller can count the batch as failed.
    """

    def __init__(self, api_key: str | None = None, model: str | None = None, base_url: str | None = None):
        self.client = OpenAI(
            api_key=api_key or os.getenv("OPENAI_API_KEY"),
            base_url=base_url or os.getenv("OPENAI_BASE_URL") or None,
            timeout=settings.external_timeout(),
            max_retries=1,
        )
        self.model = model or os.getenv("OPENAI_MODEL") or settings.DEFAULT_OPENAI_MODEL

    @staticmethod
    def build_prompt(items: list[ClassificationItem], category_names: list[str]) -> str:
        listing = [
            {
                "id": item.id,
                "name": item.name,
                "merchant": item.merchant_name,
                "amount": str(item.amount),
                "date": item.date.isoformat(),
            }
            for item in items
        ]
        return BATCH_PROMPT.format(categories=", ".join(category_names), transactions=json.dumps(listing))

    def classify_batch(
        self, items: list[ClassificationItem], category_names: list[str]
    ) -> dict[str, CategorizationResult]:
        if not items:
            return {}
        response = self.client.chat.completions.create(
            model=self.model,
            temperature=0,
            response_format={"type": "json_object"},
            messages=[{"role": "user", "content": self.build_prompt(items, category_names)}],
        )
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ValueError("categorization service returned no content")

        parsed = json.loads(content)
        known_ids = {item.id for item in items}
        results: dict[str, CategorizationResult] = {}
        for entry in parsed.get("results") or []:
            if not isinstance(entry, dict):
                continue
            transaction_id = str(entry.get("id") or entry.get("transaction_id") or "")
            category_name = entry.get("category")
            if transaction_id not in known_ids or not isinstance(category_name, str):
                continue
            results[transaction_id] = CategorizationResult(
                category=Category(name=category_name.strip()),
                confidence=_clamp_confidence(entry.get("confidence")),
                source="llm",
            )
        logger.debug("[CLASSIFY] LLM answered %s of %s item(s).", len(results), len(items))
        return results

    def learn(self, description: str, category_name: str) -> None:
        # Not fine-tuned; confirmed pairs feed the memory matcher instead.
        pass
