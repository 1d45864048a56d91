from decimal import Decimal, InvalidOperation
from typing import Any

from household_ledger.logger import get_logger
from household_ledger.models import (
    ReceiptExtraction,
    ReceiptLineItem,
    ReceiptSummary,
    SplitLine,
)

logger = get_logger(__name__)


def _decimal_or_none(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        result = Decimal(str(value).replace("$", "").replace(",", "").strip())
    except InvalidOperation:
        return None
    return result if result.is_finite() else None


def _confidence(value: Any) -> float | None:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return None
    return min(max(confidence, 0.0), 1.0)


def parse_extraction(payload: dict[str, Any], category_ids_by_name: dict[str, str]) -> ReceiptExtraction:
    """Validate the vision service's JSON and resolve category names to ids.

    Line items with no usable amount are dropped; unknown categories keep
    their name but get no id.
    """
    summary = ReceiptSummary(
        merchant=payload.get("merchant") or None,
        date=str(payload["date"]) if payload.get("date") else None,
        subtotal=_decimal_or_none(payload.get("subtotal")),
        tax=_decimal_or_none(payload.get("tax")),
        total=_decimal_or_none(payload.get("total")),
    )

    items: list[ReceiptLineItem] = []
    for raw in payload.get("line_items") or payload.get("lineItems") or []:
        if not isinstance(raw, dict):
            continue
        amount = _decimal_or_none(raw.get("amount"))
        if amount is None:
            logger.debug("[RECEIPT] Dropping line item without amount: %s", raw)
            continue
        category = raw.get("category") or None
        items.append(
            ReceiptLineItem(
                name=str(raw.get("name") or "Item"),
                amount=abs(amount),
                category=category,
                category_id=category_ids_by_name.get(category.lower()) if category else None,
                confidence=_confidence(raw.get("confidence")),
            )
        )
    return ReceiptExtraction(summary=summary, line_items=items)


def split_lines_from_receipt(
    line_items: list[ReceiptLineItem],
    accepted: list[int] | None = None,
) -> list[SplitLine]:
    """Each accepted line item becomes a candidate split child."""
    indexes = range(len(line_items)) if accepted is None else accepted
    lines: list[SplitLine] = []
    for index in indexes:
        if index < 0 or index >= len(line_items):
            raise IndexError(f"receipt line {index} does not exist")
        item = line_items[index]
        lines.append(
            SplitLine(
                amount=item.amount,
                name=item.name,
                category_id=item.category_id,
                ai_confidence=item.confidence if item.category_id else None,
                suggested=bool(item.category_id),
            )
        )
    return lines
