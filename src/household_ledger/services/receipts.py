import asyncio
import os
import uuid

from household_ledger.db.schema import ReceiptScanRow, TransactionRow
from household_ledger.errors import ConfigurationError, InvalidInputError, RejectReason, SplitRejected
from household_ledger.ingest.receipt import parse_extraction, split_lines_from_receipt
from household_ledger.integration.vision import ReceiptExtractor
from household_ledger.ledger.repository import Ledger
from household_ledger.logger import get_logger
from household_ledger.models import ReceiptLineItem, ScanStatus

logger = get_logger(__name__)

MEDIA_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "application/pdf": ".pdf",
}


def _write_file(path: str, content: bytes) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as handle:
        handle.write(content)


def _read_file(path: str) -> bytes:
    with open(path, "rb") as handle:
        return handle.read()


class ReceiptProcessor:
    """Upload -> pending -> processing -> completed | failed.

    Callers poll the scan; a completed scan can be applied as a split.
    """

    def __init__(self, ledger: Ledger, extractor: ReceiptExtractor, storage_dir: str) -> None:
        self.ledger = ledger
        self.extractor = extractor
        self.storage_dir = storage_dir

    async def upload(self, household_id: str, content: bytes, media_type: str) -> ReceiptScanRow:
        if self.extractor.client is None:
            raise ConfigurationError("OPENAI_API_KEY is not configured")
        extension = MEDIA_EXTENSIONS.get(media_type)
        if extension is None:
            raise InvalidInputError(f"unsupported receipt type {media_type}")
        if not content:
            raise InvalidInputError("empty receipt upload")

        await asyncio.to_thread(self.ledger.get_household, household_id)
        path = os.path.join(self.storage_dir, "receipts", household_id, f"{uuid.uuid4()}{extension}")
        await asyncio.to_thread(_write_file, path, content)
        scan = await asyncio.to_thread(self.ledger.create_receipt_scan, household_id, path, media_type)
        logger.info("[RECEIPT] Scan %s stored at %s.", scan.id, path)
        return scan

    async def process(self, scan_id: str) -> ScanStatus:
        scan = await asyncio.to_thread(self.ledger.set_scan_status, scan_id, ScanStatus.PROCESSING)
        try:
            categories = await asyncio.to_thread(self.ledger.list_categories, scan.household_id)
            names = [category.name for category in categories if not category.is_system]
            ids_by_name = {category.name.lower(): category.id for category in categories if not category.is_system}
            content = await asyncio.to_thread(_read_file, scan.storage_path)
            payload = await asyncio.to_thread(
                self.extractor.extract,
                content,
                scan.media_type,
                names,
                os.path.basename(scan.storage_path),
            )
            extraction = parse_extraction(payload, ids_by_name)
        except Exception as exc:
            logger.error("[RECEIPT] Scan %s failed: %s", scan_id, exc)
            await asyncio.to_thread(
                self.ledger.set_scan_status, scan_id, ScanStatus.FAILED, error=str(exc) or exc.__class__.__name__
            )
            return ScanStatus.FAILED

        await asyncio.to_thread(self.ledger.set_scan_status, scan_id, ScanStatus.COMPLETED, extraction=extraction)
        logger.info("[RECEIPT] Scan %s completed with %s line item(s).", scan_id, len(extraction.line_items))
        return ScanStatus.COMPLETED

    async def get(self, household_id: str, scan_id: str) -> ReceiptScanRow:
        return await asyncio.to_thread(self.ledger.get_receipt_scan, household_id, scan_id)

    async def apply(
        self,
        household_id: str,
        scan_id: str,
        transaction_id: str,
        accepted: list[int] | None = None,
    ) -> list[TransactionRow]:
        """Split ``transaction_id`` along the scan's accepted line items."""
        scan = await self.get(household_id, scan_id)
        if scan.status is not ScanStatus.COMPLETED:
            raise SplitRejected(RejectReason.RECEIPT_NOT_READY, f"scan {scan_id} is {scan.status.value}")
        items = [ReceiptLineItem.model_validate(item) for item in scan.line_items or []]
        try:
            lines = split_lines_from_receipt(items, accepted)
        except IndexError as exc:
            raise SplitRejected(RejectReason.INVALID_LINE, str(exc)) from None
        return await asyncio.to_thread(self.ledger.split, household_id, transaction_id, lines)
