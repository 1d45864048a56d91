import asyncio
from enum import Enum
from time import perf_counter

from sqlalchemy.exc import SQLAlchemyError

from household_ledger.core import settings
from household_ledger.domain.provider_categories import ProviderCategoryMap
from household_ledger.domain.timefmt import format_duration
from household_ledger.errors import ConfigurationError, ProviderError
from household_ledger.ingest.provider import (
    ProviderItemError,
    candidate_from_provider_item,
    removed_transaction_ids,
)
from household_ledger.integration.plaid import PlaidClient, SyncPage
from household_ledger.ledger.repository import Ledger, SyncState
from household_ledger.logger import get_logger
from household_ledger.models import SyncSummary, TransactionCandidate

logger = get_logger(__name__)


class SyncStatus(str, Enum):
    IDLE = "idle"
    PAGING = "paging"
    ERRORED = "errored"


class SyncController:
    """Drives the provider's incremental sync for one connection at a time.

    Pages are processed strictly in order; each page's rows and the cursor
    that follows it are committed together, so a failure resumes from the
    last committed page.
    """

    def __init__(
        self,
        ledger: Ledger,
        plaid: PlaidClient,
        category_map: ProviderCategoryMap,
        *,
        page_size: int | None = None,
    ) -> None:
        self.ledger = ledger
        self.plaid = plaid
        self.category_map = category_map
        self.page_size = page_size or settings.sync_page_size()
        self._locks: dict[str, asyncio.Lock] = {}
        self._status: dict[str, SyncStatus] = {}

    def status(self, connection_id: str) -> SyncStatus:
        return self._status.get(connection_id, SyncStatus.IDLE)

    def _lock_for(self, connection_id: str) -> asyncio.Lock:
        lock = self._locks.get(connection_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[connection_id] = lock
        return lock

    async def sync_household(self, household_id: str) -> dict[str, SyncSummary]:
        connections = await asyncio.to_thread(self.ledger.list_connections, household_id)
        summaries = await asyncio.gather(
            *(self.sync_connection(household_id, connection.id) for connection in connections)
        )
        return {connection.id: summary for connection, summary in zip(connections, summaries)}

    async def sync_connection(self, household_id: str, connection_id: str) -> SyncSummary:
        if not self.plaid.configured:
            raise ConfigurationError("PLAID_CLIENT_ID and PLAID_SECRET must be set")
        await asyncio.to_thread(self.ledger.get_connection, household_id, connection_id)
        async with self._lock_for(connection_id):
            return await self._run(connection_id)

    def _normalize_page(
        self,
        page: SyncPage,
        household_id: str,
        category_ids: dict[str, str],
        account_ids: dict[str, str],
    ) -> tuple[list[TransactionCandidate], int]:
        candidates: list[TransactionCandidate] = []
        invalid = 0
        for item in [*page.added, *page.modified]:
            try:
                candidates.append(
                    candidate_from_provider_item(
                        item,
                        category_map=self.category_map,
                        category_ids_by_name=category_ids,
                        account_ids_by_provider_id=account_ids,
                    )
                )
            except ProviderItemError as exc:
                logger.warning("[SYNC] Household %s: skipping provider item: %s", household_id, exc)
                invalid += 1
        return candidates, invalid

    async def _fail(self, summary: SyncSummary, connection_id: str, message: str) -> SyncSummary:
        self._status[connection_id] = SyncStatus.ERRORED
        summary.status = SyncStatus.ERRORED.value
        summary.error = message
        await asyncio.to_thread(self.ledger.record_sync_error, connection_id, message)
        logger.error(
            "[SYNC] Connection %s errored after %s page(s); cursor left at last committed page: %s",
            connection_id,
            summary.pages,
            message,
        )
        return summary

    async def _run(self, connection_id: str) -> SyncSummary:
        state: SyncState = await asyncio.to_thread(self.ledger.load_sync_state, connection_id)
        self._status[connection_id] = SyncStatus.PAGING
        summary = SyncSummary(status=SyncStatus.PAGING.value)
        try:
            return await self._page_through(state, summary)
        finally:
            # Whatever escaped the loop, the connection never stays mid-page
            if self._status.get(connection_id) is SyncStatus.PAGING:
                self._status[connection_id] = SyncStatus.ERRORED

    async def _page_through(self, state: SyncState, summary: SyncSummary) -> SyncSummary:
        connection_id = state.connection_id
        started = perf_counter()
        category_ids = await asyncio.to_thread(self.ledger.category_ids_by_name, state.household_id)
        account_ids = await asyncio.to_thread(self.ledger.account_ids_by_provider_id, state.household_id)

        cursor = state.cursor
        logger.info(
            "[SYNC] Connection %s: starting from %s.",
            connection_id,
            "saved cursor" if cursor else "full history",
        )
        while True:
            try:
                page = await self.plaid.transactions_sync(state.access_token, cursor, self.page_size)
                candidates, invalid = self._normalize_page(page, state.household_id, category_ids, account_ids)
            except ProviderError as exc:
                return await self._fail(summary, connection_id, str(exc))
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                logger.exception("[SYNC] Connection %s: malformed provider page.", connection_id)
                return await self._fail(summary, connection_id, f"malformed provider page: {exc}")

            try:
                result = await asyncio.to_thread(
                    self.ledger.apply_sync_page,
                    connection_id,
                    candidates,
                    removed_transaction_ids(page.removed),
                    page.next_cursor or cursor,
                )
            except SQLAlchemyError as exc:
                return await self._fail(summary, connection_id, f"page write failed: {exc}")

            summary.pages += 1
            summary.added += result.added
            summary.modified += result.modified
            summary.removed += result.removed
            summary.skipped += result.skipped + invalid
            logger.info(
                "[SYNC] Connection %s page %s: +%s ~%s -%s (skipped %s).",
                connection_id,
                summary.pages,
                result.added,
                result.modified,
                result.removed,
                result.skipped + invalid,
            )

            if not page.has_more:
                break
            if not page.next_cursor or page.next_cursor == cursor:
                return await self._fail(summary, connection_id, "provider reported more pages without a new cursor")
            cursor = page.next_cursor

        self._status[connection_id] = SyncStatus.IDLE
        summary.status = SyncStatus.IDLE.value
        summary.balances_refreshed = await self._refresh_balances(state)
        logger.info(
            "[SYNC] Connection %s complete in %s: %s page(s), added %s, modified %s, removed %s.",
            connection_id,
            format_duration(perf_counter() - started),
            summary.pages,
            summary.added,
            summary.modified,
            summary.removed,
        )
        return summary

    async def _refresh_balances(self, state: SyncState) -> bool:
        """Independent of the transaction sync; a failure is only logged."""
        try:
            accounts = await self.plaid.accounts_get(state.access_token)
            updated = await asyncio.to_thread(self.ledger.update_balances, state.household_id, accounts)
        except (ProviderError, SQLAlchemyError) as exc:
            logger.warning("[SYNC] Balance refresh for %s failed: %s", state.connection_id, exc)
            return False
        logger.info("[SYNC] Balances refreshed for %s account(s).", updated)
        return True
