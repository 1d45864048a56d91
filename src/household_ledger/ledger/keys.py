from household_ledger.domain.amounts import format_key_amount
from household_ledger.models import SourceChannel, TransactionCandidate

# Channels whose rows are deduplicated by a computed import key
FILE_CHANNELS = frozenset({SourceChannel.CSV, SourceChannel.OFX, SourceChannel.EMAIL})


def normalize_key_name(name: str) -> str:
    return " ".join(name.split())


def composite_key(channel: SourceChannel, candidate: TransactionCandidate) -> str:
    """channel:date:name:amount, e.g. ``csv:2024-03-01:Grocery Store:42.1``.

    Two distinct same-day rows with equal name and amount share a key; the
    second one is treated as a re-import.
    """
    return ":".join(
        (
            channel.value,
            candidate.date.isoformat(),
            normalize_key_name(candidate.name),
            format_key_amount(candidate.amount),
        )
    )


def import_key_for(candidate: TransactionCandidate) -> str | None:
    """Dedup key for file-sourced candidates; None for provider and manual rows."""
    if candidate.source_channel not in FILE_CHANNELS:
        return None
    if candidate.source_channel is SourceChannel.OFX and candidate.source_ref:
        return f"ofx:{candidate.source_ref}"
    return composite_key(candidate.source_channel, candidate)
