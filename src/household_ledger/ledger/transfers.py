from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from household_ledger.db.schema import CategoryRow, TransactionRow
from household_ledger.domain.amounts import TRANSFER_EPSILON, amounts_close
from household_ledger.errors import RejectReason, TransferRejected
from household_ledger.ledger.classification import reset_classification, set_user_category
from household_ledger.logger import get_logger

logger = get_logger(__name__)

TRANSFER_CATEGORY_NAME = "Transfer"
TRANSFER_WINDOW_DAYS = 7
CANDIDATE_LIMIT = 20


def transfer_category(session: Session, household_id: str) -> CategoryRow:
    """The household's reserved Transfer category, created on first use."""
    category = session.scalar(
        select(CategoryRow).where(
            CategoryRow.household_id == household_id,
            CategoryRow.name == TRANSFER_CATEGORY_NAME,
        )
    )
    if category is None:
        category = CategoryRow(household_id=household_id, name=TRANSFER_CATEGORY_NAME, is_system=True)
        session.add(category)
        session.flush()
    return category


def find_candidates(session: Session, txn: TransactionRow, limit: int = CANDIDATE_LIMIT) -> list[TransactionRow]:
    """Opposite legs of ``txn`` on another account within a week either side.

    The SQL filter is a cent wide; the exact epsilon is applied on Decimals.
    """
    if txn.is_split or txn.is_transfer:
        return []
    target = -txn.amount
    window = timedelta(days=TRANSFER_WINDOW_DAYS)
    stmt = (
        select(TransactionRow)
        .where(
            TransactionRow.household_id == txn.household_id,
            TransactionRow.id != txn.id,
            TransactionRow.account_id.is_distinct_from(txn.account_id),
            TransactionRow.date >= txn.date - window,
            TransactionRow.date <= txn.date + window,
            TransactionRow.is_split.is_(False),
            TransactionRow.is_transfer.is_(False),
            TransactionRow.amount >= target - TRANSFER_EPSILON * 2,
            TransactionRow.amount <= target + TRANSFER_EPSILON * 2,
        )
        .order_by(TransactionRow.date.desc(), TransactionRow.created_at.desc())
    )
    matches = [row for row in session.scalars(stmt) if amounts_close(row.amount, target, TRANSFER_EPSILON)]
    return matches[:limit]


def _check_linkable(left: TransactionRow, right: TransactionRow) -> None:
    if left.id == right.id:
        raise TransferRejected(RejectReason.SAME_TRANSACTION, "a transaction cannot be its own transfer")
    if left.household_id != right.household_id:
        raise TransferRejected(RejectReason.OTHER_HOUSEHOLD, "both legs must belong to the same household")
    if left.account_id == right.account_id:
        detail = "both legs are on the same account" if left.account_id else "neither leg has an account"
        raise TransferRejected(RejectReason.SAME_ACCOUNT, detail)
    for row in (left, right):
        if row.is_split:
            raise TransferRejected(RejectReason.ALREADY_SPLIT, f"transaction {row.id} is split")
        if row.is_transfer or row.transfer_pair_id:
            raise TransferRejected(RejectReason.ALREADY_LINKED, f"transaction {row.id} is already a transfer")


def link(session: Session, left: TransactionRow, right: TransactionRow) -> None:
    _check_linkable(left, right)
    category = transfer_category(session, left.household_id)
    left.is_transfer = right.is_transfer = True
    left.transfer_pair_id = right.id
    right.transfer_pair_id = left.id
    set_user_category(left, category.id)
    set_user_category(right, category.id)
    logger.info("[TRANSFER] Linked %s <-> %s.", left.id, right.id)


def _clear(row: TransactionRow) -> None:
    row.is_transfer = False
    row.transfer_pair_id = None
    reset_classification(row)


def unlink(session: Session, txn: TransactionRow) -> TransactionRow | None:
    """Clear both legs of the pair ``txn`` belongs to; returns the partner."""
    if not txn.is_transfer and not txn.transfer_pair_id:
        raise TransferRejected(RejectReason.NOT_LINKED, f"transaction {txn.id} is not a transfer")
    partner = session.get(TransactionRow, txn.transfer_pair_id) if txn.transfer_pair_id else None
    _clear(txn)
    if partner is not None and partner.transfer_pair_id == txn.id:
        _clear(partner)
    logger.info("[TRANSFER] Unlinked %s (partner %s).", txn.id, partner.id if partner else None)
    return partner


def detach_partner(session: Session, txn: TransactionRow) -> None:
    """Used before deleting a row so its partner is not left half-linked."""
    if not txn.transfer_pair_id:
        return
    partner = session.get(TransactionRow, txn.transfer_pair_id)
    if partner is not None and partner.transfer_pair_id == txn.id:
        _clear(partner)
