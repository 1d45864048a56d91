from abc import ABC, abstractmethod

from household_ledger.ledger.classification import ClassificationItem
from household_ledger.models import CategorizationResult


class BatchClassifier(ABC):
    @abstractmethod
    def classify_batch(
        self, items: list[ClassificationItem], category_names: list[str]
    ) -> dict[str, CategorizationResult]:
        """Map transaction id -> result for the items the classifier could place."""
        pass

    @abstractmethod
    def learn(self, description: str, category_name: str) -> None:
        """Learn from a confirmed description-category pair."""
        pass
