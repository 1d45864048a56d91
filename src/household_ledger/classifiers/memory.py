import json
import os
import threading

from rapidfuzz import fuzz, process

from household_ledger.ledger.classification import ClassificationItem
from household_ledger.logger import get_logger
from household_ledger.models import CategorizationResult, Category

from .base import BatchClassifier

logger = get_logger(__name__)


class MemoryMatcher(BatchClassifier):
    def __init__(self, data_path: str = "memory.json", threshold: float = 90.0):
        self.data_path = data_path
        self.threshold = threshold
        self.memory: dict[str, str] = {}  # description -> category name
        self._lock = threading.Lock()
        self.load()

    def load(self) -> None:
        if os.path.exists(self.data_path):
            try:
                with open(self.data_path, encoding="utf-8") as handle:
                    self.memory = json.load(handle)
            except json.JSONDecodeError:
                logger.warning("[CLASSIFY] Memory file %s is corrupt; starting empty.", self.data_path)
                self.memory = {}

    def save(self) -> None:
        with open(self.data_path, "w", encoding="utf-8") as handle:
            json.dump(self.memory, handle, indent=2)

    def classify(self, description: str, valid_categories: list[str] | None = None) -> CategorizationResult | None:
        with self._lock:
            if not self.memory or not description:
                return None
            valid = {name.lower(): name for name in valid_categories} if valid_categories is not None else None

            def resolve(category_name: str) -> str | None:
                if valid is None:
                    return category_name
                return valid.get(category_name.lower())

            # 1. Exact match
            if description in self.memory:
                category_name = resolve(self.memory[description])
                if category_name:
                    return CategorizationResult(
                        category=Category(name=category_name),
                        confidence=1.0,
                        source="memory_exact",
                    )

            # 2. Fuzzy match
            result = process.extractOne(description, self.memory.keys(), scorer=fuzz.token_sort_ratio)
            if result:
                match_description, score, _ = result
                if score >= self.threshold:
                    category_name = resolve(self.memory[match_description])
                    if category_name:
                        return CategorizationResult(
                            category=Category(name=category_name),
                            confidence=round(score / 100.0, 2),
                            source="memory_fuzzy",
                        )
        return None

    def classify_batch(
        self, items: list[ClassificationItem], category_names: list[str]
    ) -> dict[str, CategorizationResult]:
        results: dict[str, CategorizationResult] = {}
        for item in items:
            hit = self.classify(item.describe(), category_names)
            if hit:
                results[item.id] = hit
        return results

    def learn(self, description: str, category_name: str) -> None:
        if not description or not category_name:
            return
        with self._lock:
            self.memory[description] = category_name
            self.save()

    def clear(self) -> None:
        with self._lock:
            self.memory = {}
            self.save()
