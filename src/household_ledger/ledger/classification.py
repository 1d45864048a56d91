"""Rules for the category + provenance (+ confidence) triple on a ledger row.

``user`` is terminal against automated actors. ``ai`` and ``provider`` may
overwrite each other and themselves. Only the user path can leave a row
with a category of their choosing (including none); an unlinked transfer
goes back to ``none``.
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from household_ledger.db.schema import CategoryRow, TransactionRow
from household_ledger.errors import ClassificationRejected, RejectReason
from household_ledger.models import ClassifiedBy

AUTOMATED_ACTORS = frozenset({ClassifiedBy.AI, ClassifiedBy.PROVIDER})


@dataclass(frozen=True)
class ClassificationItem:
    """What the categorization service sees of one ledger row."""
    id: str
    name: str
    merchant_name: str | None
    amount: Decimal
    date: date

    def describe(self) -> str:
        return self.merchant_name or self.name


def check_transition(current: ClassifiedBy, target: ClassifiedBy) -> None:
    if target is ClassifiedBy.USER:
        return
    if current is ClassifiedBy.USER:
        raise ClassificationRejected(
            RejectReason.USER_CLASSIFIED,
            f"{target.value} may not overwrite a user classification",
        )
    if target is ClassifiedBy.NONE and current is not ClassifiedBy.NONE:
        raise ClassificationRejected(
            RejectReason.INVALID_TRANSITION,
            f"cannot move from {current.value} back to none",
        )


def is_auto_eligible(row: TransactionRow) -> bool:
    return row.category_id is None and row.classified_by is not ClassifiedBy.USER and not row.is_split


def require_category(session: Session, household_id: str, category_id: str) -> CategoryRow:
    category = session.get(CategoryRow, category_id)
    if category is None or category.household_id != household_id:
        raise ClassificationRejected(
            RejectReason.UNKNOWN_CATEGORY,
            f"category {category_id} is not part of household {household_id}",
        )
    return category


def category_ids_by_name(session: Session, household_id: str) -> dict[str, str]:
    """Lower-cased category name -> id for one household."""
    rows = session.execute(
        select(CategoryRow.name, CategoryRow.id).where(CategoryRow.household_id == household_id)
    ).all()
    return {name.lower(): category_id for name, category_id in rows}


def set_user_category(row: TransactionRow, category_id: str | None) -> None:
    row.category_id = category_id
    row.classified_by = ClassifiedBy.USER
    row.ai_confidence = None


def apply_automated(
    row: TransactionRow,
    category_id: str,
    actor: ClassifiedBy,
    confidence: float | None = None,
) -> None:
    if actor not in AUTOMATED_ACTORS:
        raise ClassificationRejected(
            RejectReason.INVALID_TRANSITION, f"{actor.value} is not an automated classifier"
        )
    check_transition(row.classified_by, actor)
    if actor is ClassifiedBy.AI:
        if confidence is not None and not 0.0 <= confidence <= 1.0:
            raise ClassificationRejected(
                RejectReason.INVALID_CONFIDENCE, f"confidence {confidence} outside 0..1"
            )
        row.ai_confidence = round(confidence, 2) if confidence is not None else None
    else:
        row.ai_confidence = None
    row.category_id = category_id
    row.classified_by = actor


def reset_classification(row: TransactionRow) -> None:
    row.category_id = None
    row.classified_by = ClassifiedBy.NONE
    row.ai_confidence = None
