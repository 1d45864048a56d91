from decimal import Decimal, InvalidOperation
from typing import Any

from household_ledger.domain.dates import parse_iso_date
from household_ledger.domain.provider_categories import ProviderCategoryMap
from household_ledger.models import ClassifiedBy, SourceChannel, TransactionCandidate


class ProviderItemError(ValueError):
    pass


def provider_category_label(item: dict[str, Any]) -> str | None:
    pfc = item.get("personal_finance_category")
    if isinstance(pfc, dict):
        primary = pfc.get("primary")
        if primary:
            return str(primary)
    # Older payloads carry a plain "category" list
    legacy = item.get("category")
    if isinstance(legacy, list) and legacy:
        return str(legacy[0]).upper().replace(" ", "_")
    return None


def candidate_from_provider_item(
    item: dict[str, Any],
    *,
    category_map: ProviderCategoryMap,
    category_ids_by_name: dict[str, str],
    account_ids_by_provider_id: dict[str, str],
    invert_amounts: bool = False,
) -> TransactionCandidate:
    """Map one added/modified sync item onto a ledger candidate.

    The provider's category label only becomes a category when both the
    lookup table and the household know it; otherwise the row stays
    unclassified.
    """
    transaction_id = item.get("transaction_id")
    if not transaction_id:
        raise ProviderItemError("item without transaction_id")

    txn_date = parse_iso_date(item.get("date"))
    if txn_date is None:
        raise ProviderItemError(f"item {transaction_id} has no usable date")

    raw_amount = item.get("amount")
    try:
        amount = Decimal(str(raw_amount))
    except (InvalidOperation, TypeError):
        raise ProviderItemError(f"item {transaction_id} has bad amount {raw_amount!r}") from None
    if raw_amount is None or not amount.is_finite():
        raise ProviderItemError(f"item {transaction_id} has bad amount {raw_amount!r}")

    category_id: str | None = None
    category_name = category_map.category_name_for(provider_category_label(item))
    if category_name:
        category_id = category_ids_by_name.get(category_name.lower())

    name = item.get("name") or item.get("merchant_name") or str(transaction_id)
    return TransactionCandidate(
        date=txn_date,
        name=str(name),
        merchant_name=item.get("merchant_name") or None,
        amount=-amount if invert_amounts else amount,
        source_channel=SourceChannel.PROVIDER,
        external_id=str(transaction_id),
        account_id=account_ids_by_provider_id.get(str(item.get("account_id") or "")),
        check_number=item.get("check_number") or None,
        category_id=category_id,
        classified_by=ClassifiedBy.PROVIDER if category_id else ClassifiedBy.NONE,
    )


def removed_transaction_ids(removed: list[dict[str, Any]]) -> list[str]:
    return [str(item["transaction_id"]) for item in removed if item.get("transaction_id")]
