from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from household_ledger.db.schema import TransactionRow
from household_ledger.errors import ClassificationRejected
from household_ledger.ledger.classification import AUTOMATED_ACTORS, apply_automated, set_user_category
from household_ledger.ledger.keys import import_key_for
from household_ledger.logger import get_logger
from household_ledger.models import ClassifiedBy, IngestSummary, TransactionCandidate

logger = get_logger(__name__)


class UpsertOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    REJECTED = "rejected"


def _find_existing(
    session: Session, household_id: str, candidate: TransactionCandidate, import_key: str | None
) -> TransactionRow | None:
    if candidate.external_id:
        return session.scalar(select(TransactionRow).where(TransactionRow.external_id == candidate.external_id))
    if import_key:
        return session.scalar(
            select(TransactionRow).where(
                TransactionRow.household_id == household_id,
                TransactionRow.import_key == import_key,
            )
        )
    return None


def _insert(
    session: Session, household_id: str, candidate: TransactionCandidate, import_key: str | None
) -> TransactionRow:
    row = TransactionRow(
        household_id=household_id,
        external_id=candidate.external_id,
        import_key=None if candidate.external_id else import_key,
        amount=candidate.amount,
        date=candidate.date,
        account_id=candidate.account_id,
        name=candidate.name,
        merchant_name=candidate.merchant_name,
        notes=candidate.notes,
        check_number=candidate.check_number,
        source_channel=candidate.source_channel,
        classified_by=ClassifiedBy.NONE,
        is_split=False,
        is_transfer=False,
    )
    if candidate.category_id:
        if candidate.classified_by in AUTOMATED_ACTORS:
            apply_automated(row, candidate.category_id, candidate.classified_by)
        else:
            set_user_category(row, candidate.category_id)
    session.add(row)
    return row


def _merge(row: TransactionRow, candidate: TransactionCandidate) -> bool:
    changed = False
    updates = {
        "amount": candidate.amount,
        "date": candidate.date,
        "name": candidate.name,
        "merchant_name": candidate.merchant_name,
    }
    # Only overwrite these when the channel actually carries them
    for field in ("account_id", "check_number", "notes"):
        value = getattr(candidate, field)
        if value is not None:
            updates[field] = value

    for field, value in updates.items():
        if getattr(row, field) != value:
            setattr(row, field, value)
            changed = True

    if (
        candidate.category_id
        and candidate.classified_by in AUTOMATED_ACTORS
        and row.classified_by is not ClassifiedBy.USER
        and (row.category_id != candidate.category_id or row.classified_by is not candidate.classified_by)
    ):
        apply_automated(row, candidate.category_id, candidate.classified_by)
        changed = True
    return changed


def upsert_candidate(session: Session, household_id: str, candidate: TransactionCandidate) -> UpsertOutcome:
    """Insert on first sight, overwrite mutable fields on a repeat key.

    A user classification on the existing row is never touched.
    """
    import_key = import_key_for(candidate)
    existing = _find_existing(session, household_id, candidate, import_key)
    if existing is None:
        _insert(session, household_id, candidate, import_key)
        return UpsertOutcome.INSERTED

    if existing.household_id != household_id:
        logger.warning(
            "[UPSERT] Key %s already belongs to another household; skipped.",
            candidate.external_id or import_key,
        )
        return UpsertOutcome.REJECTED

    if existing.is_split and existing.amount != candidate.amount:
        logger.warning(
            "[UPSERT] Split parent %s would change amount %s -> %s; skipped.",
            existing.id,
            existing.amount,
            candidate.amount,
        )
        return UpsertOutcome.REJECTED

    try:
        changed = _merge(existing, candidate)
    except ClassificationRejected as exc:
        logger.warning("[UPSERT] Classification on %s rejected: %s", existing.id, exc)
        return UpsertOutcome.REJECTED
    return UpsertOutcome.UPDATED if changed else UpsertOutcome.UNCHANGED


def tally(summary: IngestSummary, outcome: UpsertOutcome) -> None:
    if outcome is UpsertOutcome.INSERTED:
        summary.added += 1
    elif outcome is UpsertOutcome.UPDATED:
        summary.modified += 1
    else:
        summary.skipped += 1


def upsert_many(
    session: Session, household_id: str, candidates: list[TransactionCandidate]
) -> IngestSummary:
    summary = IngestSummary()
    for candidate in candidates:
        tally(summary, upsert_candidate(session, household_id, candidate))
    return summary
