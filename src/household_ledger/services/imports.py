import asyncio

from household_ledger.errors import InvalidInputError
from household_ledger.ingest.csv_rows import ColumnMapping, normalize_rows, read_csv_text, suggest_mapping
from household_ledger.ingest.ofx import normalize_ofx
from household_ledger.ledger.repository import Ledger
from household_ledger.logger import get_logger
from household_ledger.models import ImportSummary, NormalizeResult
from household_ledger.services.classification import ClassificationPipeline

logger = get_logger(__name__)

PREVIEW_ROWS = 5


class ImportService:
    """File imports (CSV, OFX/QFX) with the optional classification pass afterwards."""

    def __init__(self, ledger: Ledger, classification: ClassificationPipeline | None = None) -> None:
        self.ledger = ledger
        self.classification = classification

    @staticmethod
    def preview_csv(text: str) -> tuple[list[str], ColumnMapping | None, list[dict[str, str]]]:
        headers, rows = read_csv_text(text)
        return headers, suggest_mapping(headers), rows[:PREVIEW_ROWS]

    async def import_csv(
        self,
        household_id: str,
        text: str,
        mapping: ColumnMapping | None = None,
        *,
        account_id: str | None = None,
        invert_amounts: bool = False,
    ) -> ImportSummary:
        headers, rows = read_csv_text(text)
        mapping = mapping or suggest_mapping(headers)
        if mapping is None:
            raise InvalidInputError("could not infer date, description and amount columns; supply a mapping")
        missing = [column for column in (mapping.date, mapping.name, mapping.amount) if column not in headers]
        if missing:
            raise InvalidInputError(f"mapped columns not in file: {', '.join(missing)}")
        if account_id:
            await asyncio.to_thread(self.ledger.get_account, household_id, account_id)

        normalized = normalize_rows(rows, mapping, account_id=account_id, invert_amounts=invert_amounts)
        return await self._store(household_id, normalized, "CSV")

    async def import_ofx(self, household_id: str, text: str, *, account_id: str | None = None) -> ImportSummary:
        if account_id:
            await asyncio.to_thread(self.ledger.get_account, household_id, account_id)
        return await self._store(household_id, normalize_ofx(text, account_id=account_id), "OFX")

    async def _store(self, household_id: str, normalized: NormalizeResult, label: str) -> ImportSummary:
        ingested = await asyncio.to_thread(self.ledger.ingest, household_id, normalized.candidates)
        summary = ImportSummary(
            added=ingested.added,
            modified=ingested.modified,
            skipped=ingested.skipped + normalized.skipped,
            errors=ingested.errors,
            row_errors=normalized.errors,
        )
        logger.info(
            "[IMPORT] %s import for %s: added %s, modified %s, skipped %s.",
            label,
            household_id,
            summary.added,
            summary.modified,
            summary.skipped,
        )
        if summary.added:
            await self._auto_classify(household_id, summary)
        return summary

    async def _auto_classify(self, household_id: str, summary: ImportSummary) -> None:
        if self.classification is None:
            return
        household = await asyncio.to_thread(self.ledger.get_household, household_id)
        if not household.auto_classify_imports:
            return
        try:
            result = await self.classification.classify_household(household_id)
        except Exception as exc:
            # The import itself already committed
            logger.error("[IMPORT] Auto-classify after import failed: %s", exc)
            summary.classify_error = str(exc)
            return
        summary.classified = result.classified
