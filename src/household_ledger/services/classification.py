import asyncio

from household_ledger.core import settings
from household_ledger.errors import ConfigurationError, LedgerError
from household_ledger.ledger.repository import Ledger
from household_ledger.logger import get_logger
from household_ledger.manager import CategorizerService
from household_ledger.models import ClassificationSummary

logger = get_logger(__name__)


class ClassificationPipeline:
    """Batch pass over a household's most recent unclassified rows."""

    def __init__(
        self,
        ledger: Ledger,
        service: CategorizerService,
        *,
        window: int | None = None,
        batch_size: int | None = None,
    ) -> None:
        self.ledger = ledger
        self.service = service
        self.window = window or settings.classify_window()
        self.batch_size = batch_size or settings.classify_batch_size()

    async def classify_household(self, household_id: str) -> ClassificationSummary:
        if not self.service.llm_enabled:
            raise ConfigurationError("OPENAI_API_KEY is not configured")

        summary = ClassificationSummary()
        categories = await asyncio.to_thread(self.ledger.list_categories, household_id)
        # System categories (Transfer) are only assigned by linking
        assignable = {category.name.lower(): category for category in categories if not category.is_system}
        if not assignable:
            return summary
        category_names = [category.name for category in assignable.values()]

        items = await asyncio.to_thread(self.ledger.classification_window, household_id, self.window)
        if not items:
            return summary
        logger.info(
            "[CLASSIFY] Household %s: %s candidate(s) in batches of %s.",
            household_id,
            len(items),
            self.batch_size,
        )

        for start in range(0, len(items), self.batch_size):
            batch = items[start:start + self.batch_size]
            try:
                results = await asyncio.to_thread(
                    self.service.classify_batch, household_id, batch, category_names
                )
            except Exception as exc:
                logger.error("[CLASSIFY] Batch %s failed: %s", start // self.batch_size + 1, exc)
                summary.errors += len(batch)
                continue

            for item in batch:
                result = results.get(item.id)
                if result is None:
                    continue
                category = assignable.get(result.category.name.lower())
                if category is None:
                    summary.skipped += 1
                    continue
                try:
                    applied = await asyncio.to_thread(
                        self.ledger.apply_ai_category,
                        household_id,
                        item.id,
                        category.id,
                        result.confidence,
                    )
                except LedgerError as exc:
                    logger.warning("[CLASSIFY] Could not apply result to %s: %s", item.id, exc)
                    summary.errors += 1
                    continue
                if applied:
                    summary.classified += 1
                else:
                    summary.skipped += 1

        logger.info(
            "[CLASSIFY] Household %s done. Classified: %s, skipped: %s, errors: %s",
            household_id,
            summary.classified,
            summary.skipped,
            summary.errors,
        )
        return summary

    async def remember(self, household_id: str, description: str, category_id: str) -> None:
        """Feed a user-confirmed assignment into the classification memory."""
        categories = await asyncio.to_thread(self.ledger.list_categories, household_id)
        for category in categories:
            if category.id == category_id and not category.is_system:
                await asyncio.to_thread(self.service.learn, household_id, description, category.name)
                return
