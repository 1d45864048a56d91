from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, sessionmaker

from household_ledger.db.schema import (
    Account,
    CategoryRow,
    Household,
    HouseholdMember,
    ProviderConnection,
    ReceiptScanRow,
    TransactionRow,
)
from household_ledger.domain.amounts import to_money
from household_ledger.errors import LedgerError, NotFoundError, RejectReason, SplitRejected
from household_ledger.ledger import aggregates, splits, transfers
from household_ledger.ledger.classification import (
    ClassificationItem,
    apply_automated,
    category_ids_by_name,
    is_auto_eligible,
    require_category,
    set_user_category,
)
from household_ledger.ledger.upsert import tally, upsert_candidate, upsert_many
from household_ledger.logger import get_logger
from household_ledger.models import (
    BulkResult,
    CashFlow,
    CategorySpend,
    ClassifiedBy,
    IngestSummary,
    MemberRole,
    ReceiptExtraction,
    ScanStatus,
    SourceChannel,
    SplitLine,
    SyncSummary,
    TransactionCandidate,
    TransactionFilters,
)

logger = get_logger(__name__)

EDITABLE_FIELDS = frozenset({"name", "merchant_name", "notes", "check_number", "date", "amount", "account_id"})


@dataclass(frozen=True)
class SyncState:
    connection_id: str
    household_id: str
    access_token: str
    cursor: str | None
    last_error: str | None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_decimal(value: Any) -> Decimal | None:
    return None if value is None else to_money(value)


class Ledger:
    """Persistence facade; every public method is one database transaction."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def unit(self) -> Iterator[Session]:
        with self._session_factory.begin() as session:
            yield session

    # Households, members, categories

    def create_household(
        self,
        name: str,
        owner_user_id: str,
        category_names: list[str],
        *,
        auto_classify_imports: bool = False,
    ) -> Household:
        with self.unit() as session:
            household = Household(name=name, auto_classify_imports=auto_classify_imports)
            session.add(household)
            session.flush()
            session.add(HouseholdMember(household_id=household.id, user_id=owner_user_id, role=MemberRole.OWNER))
            for category_name in dict.fromkeys(category_names):
                session.add(
                    CategoryRow(
                        household_id=household.id,
                        name=category_name,
                        is_system=category_name == transfers.TRANSFER_CATEGORY_NAME,
                    )
                )
            logger.info("[HOUSEHOLD] Created %s (%s categories).", household.id, len(category_names))
            return household

    def get_household(self, household_id: str) -> Household:
        with self.unit() as session:
            household = session.get(Household, household_id)
            if household is None:
                raise NotFoundError("household", household_id)
            return household

    def set_auto_classify(self, household_id: str, enabled: bool) -> Household:
        with self.unit() as session:
            household = session.get(Household, household_id)
            if household is None:
                raise NotFoundError("household", household_id)
            household.auto_classify_imports = enabled
            return household

    def add_member(self, household_id: str, user_id: str, role: MemberRole = MemberRole.MEMBER) -> HouseholdMember:
        with self.unit() as session:
            if session.get(Household, household_id) is None:
                raise NotFoundError("household", household_id)
            member = session.scalar(
                select(HouseholdMember).where(
                    HouseholdMember.household_id == household_id,
                    HouseholdMember.user_id == user_id,
                )
            )
            if member is None:
                member = HouseholdMember(household_id=household_id, user_id=user_id, role=role)
                session.add(member)
            else:
                member.role = role
            return member

    def member_role(self, household_id: str, user_id: str) -> MemberRole | None:
        with self.unit() as session:
            return session.scalar(
                select(HouseholdMember.role).where(
                    HouseholdMember.household_id == household_id,
                    HouseholdMember.user_id == user_id,
                )
            )

    def list_categories(self, household_id: str) -> list[CategoryRow]:
        with self.unit() as session:
            return list(
                session.scalars(
                    select(CategoryRow).where(CategoryRow.household_id == household_id).order_by(CategoryRow.name)
                )
            )

    def category_ids_by_name(self, household_id: str) -> dict[str, str]:
        with self.unit() as session:
            return category_ids_by_name(session, household_id)

    def create_category(self, household_id: str, name: str) -> CategoryRow:
        with self.unit() as session:
            existing = session.scalar(
                select(CategoryRow).where(CategoryRow.household_id == household_id, CategoryRow.name == name)
            )
            if existing is not None:
                return existing
            category = CategoryRow(household_id=household_id, name=name)
            session.add(category)
            return category

    # Accounts and provider connections

    def create_account(
        self, household_id: str, name: str, *, account_type: str = "depository", **fields: Any
    ) -> Account:
        with self.unit() as session:
            account = Account(household_id=household_id, name=name, type=account_type, **fields)
            session.add(account)
            return account

    def list_accounts(self, household_id: str) -> list[Account]:
        with self.unit() as session:
            return list(
                session.scalars(select(Account).where(Account.household_id == household_id).order_by(Account.name))
            )

    def get_account(self, household_id: str, account_id: str) -> Account:
        with self.unit() as session:
            account = session.get(Account, account_id)
            if account is None or account.household_id != household_id:
                raise NotFoundError("account", account_id)
            return account

    def create_connection(
        self,
        household_id: str,
        provider_item_id: str,
        access_token: str,
        institution_name: str | None = None,
    ) -> ProviderConnection:
        """Create the connection with an empty cursor; re-linking an item refreshes its token."""
        with self.unit() as session:
            connection = session.scalar(
                select(ProviderConnection).where(ProviderConnection.provider_item_id == provider_item_id)
            )
            if connection is None:
                connection = ProviderConnection(
                    household_id=household_id,
                    provider_item_id=provider_item_id,
                    access_token=access_token,
                    institution_name=institution_name,
                    cursor=None,
                )
                session.add(connection)
            else:
                if connection.household_id != household_id:
                    raise NotFoundError("connection", provider_item_id)
                connection.access_token = access_token
                connection.institution_name = institution_name or connection.institution_name
                connection.last_error = None
            return connection

    def get_connection(self, household_id: str, connection_id: str) -> ProviderConnection:
        with self.unit() as session:
            connection = session.get(ProviderConnection, connection_id)
            if connection is None or connection.household_id != household_id:
                raise NotFoundError("connection", connection_id)
            return connection

    def list_connections(self, household_id: str) -> list[ProviderConnection]:
        with self.unit() as session:
            return list(
                session.scalars(
                    select(ProviderConnection)
                    .where(ProviderConnection.household_id == household_id)
                    .order_by(ProviderConnection.created_at)
                )
            )

    def upsert_provider_accounts(self, household_id: str, connection_id: str, accounts: list[dict[str, Any]]) -> int:
        with self.unit() as session:
            count = 0
            for payload in accounts:
                provider_account_id = payload.get("account_id")
                if not provider_account_id:
                    continue
                account = session.scalar(select(Account).where(Account.provider_account_id == provider_account_id))
                if account is None:
                    account = Account(household_id=household_id, provider_account_id=provider_account_id, name="")
                    session.add(account)
                balances = payload.get("balances") or {}
                account.connection_id = connection_id
                account.name = payload.get("name") or payload.get("official_name") or provider_account_id
                account.official_name = payload.get("official_name")
                account.type = payload.get("type") or "depository"
                account.subtype = payload.get("subtype")
                account.mask = payload.get("mask")
                account.balance_current = _to_decimal(balances.get("current"))
                account.balance_available = _to_decimal(balances.get("available"))
                count += 1
            return count

    def update_balances(self, household_id: str, accounts: list[dict[str, Any]]) -> int:
        with self.unit() as session:
            updated = 0
            for payload in accounts:
                account = session.scalar(
                    select(Account).where(
                        Account.provider_account_id == payload.get("account_id"),
                        Account.household_id == household_id,
                    )
                )
                if account is None:
                    continue
                balances = payload.get("balances") or {}
                account.balance_current = _to_decimal(balances.get("current"))
                account.balance_available = _to_decimal(balances.get("available"))
                updated += 1
            return updated

    def account_ids_by_provider_id(self, household_id: str) -> dict[str, str]:
        with self.unit() as session:
            rows = session.execute(
                select(Account.provider_account_id, Account.id).where(
                    Account.household_id == household_id,
                    Account.provider_account_id.is_not(None),
                )
            ).all()
            return {provider_id: account_id for provider_id, account_id in rows}

    def load_sync_state(self, connection_id: str) -> SyncState:
        with self.unit() as session:
            connection = session.get(ProviderConnection, connection_id)
            if connection is None:
                raise NotFoundError("connection", connection_id)
            return SyncState(
                connection_id=connection.id,
                household_id=connection.household_id,
                access_token=connection.access_token,
                cursor=connection.cursor,
                last_error=connection.last_error,
            )

    def apply_sync_page(
        self,
        connection_id: str,
        candidates: list[TransactionCandidate],
        removed_external_ids: list[str],
        next_cursor: str | None,
    ) -> SyncSummary:
        """Upserts, removals and the new cursor for one page, committed together."""
        with self.unit() as session:
            connection = session.get(ProviderConnection, connection_id)
            if connection is None:
                raise NotFoundError("connection", connection_id)
            page = SyncSummary()
            for candidate in candidates:
                tally(page, upsert_candidate(session, connection.household_id, candidate))
            for external_id in removed_external_ids:
                row = session.scalar(
                    select(TransactionRow).where(
                        TransactionRow.external_id == external_id,
                        TransactionRow.household_id == connection.household_id,
                    )
                )
                if row is not None:
                    self._delete_row(session, row)
                    page.removed += 1
            connection.cursor = next_cursor
            connection.last_error = None
            connection.last_synced_at = _now()
            return page

    def record_sync_error(self, connection_id: str, message: str) -> None:
        with self.unit() as session:
            connection = session.get(ProviderConnection, connection_id)
            if connection is not None:
                connection.last_error = message

    # Transactions

    def ingest(self, household_id: str, candidates: list[TransactionCandidate]) -> IngestSummary:
        with self.unit() as session:
            if session.get(Household, household_id) is None:
                raise NotFoundError("household", household_id)
            return upsert_many(session, household_id, candidates)

    def _get_row(self, session: Session, household_id: str, transaction_id: str) -> TransactionRow:
        row = session.get(TransactionRow, transaction_id)
        if row is None or row.household_id != household_id:
            raise NotFoundError("transaction", transaction_id)
        return row

    def get_transaction(self, household_id: str, transaction_id: str) -> TransactionRow:
        with self.unit() as session:
            return self._get_row(session, household_id, transaction_id)

    def create_manual(self, household_id: str, candidate: TransactionCandidate) -> TransactionRow:
        with self.unit() as session:
            if session.get(Household, household_id) is None:
                raise NotFoundError("household", household_id)
            row = TransactionRow(
                household_id=household_id,
                amount=candidate.amount,
                date=candidate.date,
                account_id=candidate.account_id,
                name=candidate.name,
                merchant_name=candidate.merchant_name,
                notes=candidate.notes,
                check_number=candidate.check_number,
                source_channel=SourceChannel.MANUAL,
                classified_by=ClassifiedBy.NONE,
                is_split=False,
                is_transfer=False,
            )
            if candidate.category_id:
                require_category(session, household_id, candidate.category_id)
                set_user_category(row, candidate.category_id)
            session.add(row)
            return row

    def update_transaction(self, household_id: str, transaction_id: str, changes: dict[str, Any]) -> TransactionRow:
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"fields not editable: {', '.join(sorted(unknown))}")
        if changes.get("amount") is not None:
            changes = {**changes, "amount": to_money(changes["amount"])}
        with self.unit() as session:
            row = self._get_row(session, household_id, transaction_id)
            if "amount" in changes and changes["amount"] != row.amount:
                if row.is_split:
                    raise SplitRejected(
                        RejectReason.SPLIT_PARENT_AMOUNT, "unsplit before changing a split parent's amount"
                    )
                if row.parent_transaction_id:
                    raise SplitRejected(RejectReason.SPLIT_CHILD, "split lines keep their balanced amounts")
            for field, value in changes.items():
                setattr(row, field, value)
            return row

    def set_category(self, household_id: str, transaction_id: str, category_id: str | None) -> TransactionRow:
        """Manual category edit; always provenance ``user``."""
        with self.unit() as session:
            row = self._get_row(session, household_id, transaction_id)
            if category_id:
                require_category(session, household_id, category_id)
            set_user_category(row, category_id)
            return row

    def _delete_row(self, session: Session, row: TransactionRow) -> None:
        if row.is_split:
            for child in splits.split_children(session, row.id):
                transfers.detach_partner(session, child)
            splits.delete_children(session, row.id)
        transfers.detach_partner(session, row)
        session.delete(row)

    def delete_transaction(self, household_id: str, transaction_id: str) -> None:
        with self.unit() as session:
            row = self._get_row(session, household_id, transaction_id)
            if row.parent_transaction_id:
                raise SplitRejected(RejectReason.SPLIT_CHILD, "delete the split parent or unsplit it instead")
            self._delete_row(session, row)

    def list_transactions(self, household_id: str, filters: TransactionFilters | None = None) -> list[TransactionRow]:
        filters = filters or TransactionFilters()
        stmt = select(TransactionRow).where(
            TransactionRow.household_id == household_id,
            TransactionRow.is_split.is_(False),
        )
        if filters.search:
            pattern = f"%{filters.search}%"
            stmt = stmt.where(
                or_(TransactionRow.name.ilike(pattern), TransactionRow.merchant_name.ilike(pattern))
            )
        if filters.account_id:
            stmt = stmt.where(TransactionRow.account_id == filters.account_id)
        if filters.category_id:
            stmt = stmt.where(TransactionRow.category_id == filters.category_id)
        if filters.start_date:
            stmt = stmt.where(TransactionRow.date >= filters.start_date)
        if filters.end_date:
            stmt = stmt.where(TransactionRow.date <= filters.end_date)
        stmt = (
            stmt.order_by(TransactionRow.date.desc(), TransactionRow.created_at.desc())
            .offset(filters.offset)
            .limit(filters.limit)
        )
        with self.unit() as session:
            return list(session.scalars(stmt))

    def _bulk(self, label: str, transaction_ids: list[str], action: Callable[[str], object]) -> BulkResult:
        result = BulkResult(requested=len(transaction_ids))
        for transaction_id in transaction_ids:
            try:
                action(transaction_id)
            except LedgerError as exc:
                logger.warning("[BULK] %s failed for %s: %s", label, transaction_id, exc)
                result.failed += 1
            else:
                result.succeeded += 1
        logger.info(
            "[BULK] %s: %s requested, %s succeeded, %s failed.",
            label,
            result.requested,
            result.succeeded,
            result.failed,
        )
        return result

    def bulk_set_category(self, household_id: str, transaction_ids: list[str], category_id: str | None) -> BulkResult:
        return self._bulk(
            "recategorize",
            transaction_ids,
            lambda transaction_id: self.set_category(household_id, transaction_id, category_id),
        )

    def bulk_delete(self, household_id: str, transaction_ids: list[str]) -> BulkResult:
        return self._bulk(
            "delete",
            transaction_ids,
            lambda transaction_id: self.delete_transaction(household_id, transaction_id),
        )

    # Splits and transfers

    def split(self, household_id: str, transaction_id: str, lines: list[SplitLine]) -> list[TransactionRow]:
        with self.unit() as session:
            parent = self._get_row(session, household_id, transaction_id)
            return splits.split_transaction(session, parent, lines)

    def unsplit(self, household_id: str, transaction_id: str) -> int:
        with self.unit() as session:
            parent = self._get_row(session, household_id, transaction_id)
            return splits.unsplit_transaction(session, parent)

    def split_children(self, household_id: str, transaction_id: str) -> list[TransactionRow]:
        with self.unit() as session:
            self._get_row(session, household_id, transaction_id)
            return splits.split_children(session, transaction_id)

    def transfer_candidates(self, household_id: str, transaction_id: str) -> list[TransactionRow]:
        with self.unit() as session:
            return transfers.find_candidates(session, self._get_row(session, household_id, transaction_id))

    def link_transfer(
        self, household_id: str, transaction_id: str, partner_id: str
    ) -> tuple[TransactionRow, TransactionRow]:
        with self.unit() as session:
            left = self._get_row(session, household_id, transaction_id)
            right = session.get(TransactionRow, partner_id)
            if right is None:
                raise NotFoundError("transaction", partner_id)
            transfers.link(session, left, right)
            return left, right

    def unlink_transfer(self, household_id: str, transaction_id: str) -> TransactionRow | None:
        with self.unit() as session:
            return transfers.unlink(session, self._get_row(session, household_id, transaction_id))

    # Automated classification

    def classification_window(self, household_id: str, limit: int) -> list[ClassificationItem]:
        with self.unit() as session:
            rows = session.scalars(
                select(TransactionRow)
                .where(
                    TransactionRow.household_id == household_id,
                    TransactionRow.category_id.is_(None),
                    TransactionRow.classified_by != ClassifiedBy.USER,
                    TransactionRow.is_split.is_(False),
                )
                .order_by(TransactionRow.date.desc(), TransactionRow.created_at.desc())
                .limit(limit)
            )
            return [
                ClassificationItem(
                    id=row.id,
                    name=row.name,
                    merchant_name=row.merchant_name,
                    amount=row.amount,
                    date=row.date,
                )
                for row in rows
            ]

    def apply_ai_category(
        self, household_id: str, transaction_id: str, category_id: str, confidence: float | None
    ) -> bool:
        """Write an AI result unless the row stopped being eligible meanwhile."""
        with self.unit() as session:
            row = session.get(TransactionRow, transaction_id)
            if row is None or row.household_id != household_id or not is_auto_eligible(row):
                return False
            require_category(session, household_id, category_id)
            apply_automated(row, category_id, ClassifiedBy.AI, confidence)
            return True

    # Aggregates

    def cash_flow(self, household_id: str, start: date, end: date) -> CashFlow:
        with self.unit() as session:
            return aggregates.cash_flow(session, household_id, start, end)

    def spending_by_category(self, household_id: str, start: date, end: date) -> list[CategorySpend]:
        with self.unit() as session:
            return aggregates.spending_by_category(session, household_id, start, end)

    def recent(self, household_id: str, limit: int = 10) -> list[TransactionRow]:
        with self.unit() as session:
            return aggregates.recent(session, household_id, limit)

    # Receipt scans

    def create_receipt_scan(self, household_id: str, storage_path: str, media_type: str) -> ReceiptScanRow:
        with self.unit() as session:
            scan = ReceiptScanRow(
                household_id=household_id,
                storage_path=storage_path,
                media_type=media_type,
                status=ScanStatus.PENDING,
            )
            session.add(scan)
            return scan

    def get_receipt_scan(self, household_id: str, scan_id: str) -> ReceiptScanRow:
        with self.unit() as session:
            scan = session.get(ReceiptScanRow, scan_id)
            if scan is None or scan.household_id != household_id:
                raise NotFoundError("receipt scan", scan_id)
            return scan

    def set_scan_status(
        self,
        scan_id: str,
        status: ScanStatus,
        *,
        extraction: ReceiptExtraction | None = None,
        error: str | None = None,
    ) -> ReceiptScanRow:
        with self.unit() as session:
            scan = session.get(ReceiptScanRow, scan_id)
            if scan is None:
                raise NotFoundError("receipt scan", scan_id)
            scan.status = status
            scan.error = error
            if extraction is not None:
                scan.extracted_data = extraction.summary.model_dump(mode="json")
                scan.line_items = [item.model_dump(mode="json") for item in extraction.line_items]
            return scan

