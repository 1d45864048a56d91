import json
from collections.abc import Generator
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from household_ledger.classifiers.llm import LLMBatchClassifier
from household_ledger.ledger.classification import ClassificationItem

ITEMS = [
    ClassificationItem(id="t1", name="WHOLEFDS #123", merchant_name="Whole Foods", amount=Decimal("54.20"),
                       date=date(2024, 3, 1)),
    ClassificationItem(id="t2", name="SHELL OIL", merchant_name=None, amount=Decimal("40.00"),
                       date=date(2024, 3, 2)),
]


@pytest.fixture
def mock_openai_client() -> Generator[MagicMock, None, None]:
    with patch("household_ledger.classifiers.llm.OpenAI") as mock:
        yield mock


def _completion(content: str | None) -> MagicMock:
    completion = MagicMock()
    completion.choices[0].message.content = content
    return completion


def test_llm_classify_batch(mock_openai_client: MagicMock) -> None:
    mock_instance = mock_openai_client.return_value
    mock_instance.chat.completions.create.return_value = _completion(
        json.dumps(
            {
                "results": [
                    {"id": "t1", "category": "Groceries", "confidence": 0.93},
                    {"id": "t2", "category": "Transportation", "confidence": 7},
                    {"id": "t99", "category": "Groceries", "confidence": 0.5},
                ]
            }
        )
    )

    classifier = LLMBatchClassifier(api_key="sk-fake", model="gpt-4o-mini")
    results = classifier.classify_batch(ITEMS, ["Groceries", "Transportation"])

    assert set(results) == {"t1", "t2"}
    assert results["t1"].category.name == "Groceries"
    assert results["t1"].confidence == 0.93
    assert results["t1"].source == "llm"
    # Out-of-range confidence is clamped
    assert results["t2"].confidence == 1.0

    kwargs = mock_instance.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["response_format"] == {"type": "json_object"}
    prompt = kwargs["messages"][0]["content"]
    assert "Groceries, Transportation" in prompt
    assert "WHOLEFDS #123" in prompt


def test_llm_empty_content_raises(mock_openai_client: MagicMock) -> None:
    mock_openai_client.return_value.chat.completions.create.return_value = _completion(None)
    classifier = LLMBatchClassifier(api_key="sk-fake")
    with pytest.raises(ValueError):
        classifier.classify_batch(ITEMS, ["Groceries"])


def test_llm_error_propagates(mock_openai_client: MagicMock) -> None:
    mock_openai_client.return_value.chat.completions.create.side_effect = RuntimeError("API Error")
    classifier = LLMBatchClassifier(api_key="sk-fake")
    with pytest.raises(RuntimeError):
        classifier.classify_batch(ITEMS, ["Groceries"])


def test_llm_no_items_skips_the_call(mock_openai_client: MagicMock) -> None:
    classifier = LLMBatchClassifier(api_key="sk-fake")
    assert classifier.classify_batch([], ["Groceries"]) == {}
    mock_openai_client.return_value.chat.completions.create.assert_not_called()
