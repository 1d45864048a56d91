from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from household_ledger.db.schema import TransactionRow
from household_ledger.domain.amounts import SPLIT_EPSILON, amounts_close
from household_ledger.errors import RejectReason, SplitRejected
from household_ledger.ledger.classification import require_category
from household_ledger.logger import get_logger
from household_ledger.models import ClassifiedBy, SplitLine

logger = get_logger(__name__)

MIN_SPLIT_LINES = 2


def validate_split(parent: TransactionRow, lines: list[SplitLine]) -> None:
    if parent.is_split:
        raise SplitRejected(RejectReason.ALREADY_SPLIT, f"transaction {parent.id} is already split")
    if parent.parent_transaction_id:
        raise SplitRejected(RejectReason.SPLIT_CHILD, f"transaction {parent.id} is itself a split line")
    if parent.is_transfer:
        raise SplitRejected(RejectReason.IS_TRANSFER, f"transaction {parent.id} is linked as a transfer")
    if len(lines) < MIN_SPLIT_LINES:
        raise SplitRejected(RejectReason.TOO_FEW_LINES, f"a split needs at least {MIN_SPLIT_LINES} lines")
    for index, line in enumerate(lines):
        if line.amount <= 0:
            raise SplitRejected(RejectReason.INVALID_LINE, f"line {index} amount must be positive")
        if line.ai_confidence is not None and not 0.0 <= line.ai_confidence <= 1.0:
            raise SplitRejected(RejectReason.INVALID_LINE, f"line {index} confidence outside 0..1")

    total = sum((line.amount for line in lines), Decimal("0"))
    target = abs(parent.amount)
    if not amounts_close(total, target, SPLIT_EPSILON):
        raise SplitRejected(
            RejectReason.UNBALANCED,
            f"lines sum to {total}, parent amount is {target}",
        )


def _child_classification(line: SplitLine) -> tuple[ClassifiedBy, float | None]:
    if not line.category_id:
        return ClassifiedBy.NONE, None
    if line.suggested or line.ai_confidence is not None:
        confidence = round(line.ai_confidence, 2) if line.ai_confidence is not None else None
        return ClassifiedBy.AI, confidence
    return ClassifiedBy.USER, None


def split_transaction(session: Session, parent: TransactionRow, lines: list[SplitLine]) -> list[TransactionRow]:
    """Mark ``parent`` as split and add one child per line.

    Line amounts are magnitudes; each child takes the parent's direction.
    Runs inside the caller's unit so readers see all rows or none.
    """
    validate_split(parent, lines)
    for line in lines:
        if line.category_id:
            require_category(session, parent.household_id, line.category_id)

    sign = Decimal("-1") if parent.amount < 0 else Decimal("1")
    children: list[TransactionRow] = []
    for line in lines:
        classified_by, confidence = _child_classification(line)
        child = TransactionRow(
            household_id=parent.household_id,
            amount=line.amount * sign,
            date=parent.date,
            account_id=parent.account_id,
            name=line.name or parent.name,
            merchant_name=parent.merchant_name,
            source_channel=parent.source_channel,
            category_id=line.category_id,
            classified_by=classified_by,
            ai_confidence=confidence,
            parent_transaction_id=parent.id,
            is_split=False,
            is_transfer=False,
        )
        session.add(child)
        children.append(child)

    parent.is_split = True
    logger.info("[SPLIT] Transaction %s split into %s lines.", parent.id, len(children))
    return children


def split_children(session: Session, parent_id: str) -> list[TransactionRow]:
    return list(
        session.scalars(
            select(TransactionRow)
            .where(TransactionRow.parent_transaction_id == parent_id)
            .order_by(TransactionRow.created_at, TransactionRow.id)
        )
    )


def delete_children(session: Session, parent_id: str) -> int:
    result = session.execute(delete(TransactionRow).where(TransactionRow.parent_transaction_id == parent_id))
    return result.rowcount or 0


def unsplit_transaction(session: Session, parent: TransactionRow) -> int:
    if not parent.is_split:
        raise SplitRejected(RejectReason.NOT_SPLIT, f"transaction {parent.id} is not split")
    for child in split_children(session, parent.id):
        if child.is_transfer:
            raise SplitRejected(
                RejectReason.IS_TRANSFER,
                f"split line {child.id} is linked as a transfer; unlink it first",
            )
    removed = delete_children(session, parent.id)
    parent.is_split = False
    logger.info("[SPLIT] Transaction %s unsplit, %s lines removed.", parent.id, removed)
    return removed
