import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")

# Currency rounding tolerance for split balancing
SPLIT_EPSILON = Decimal("0.01")
# Opposite-leg tolerance for transfer candidates
TRANSFER_EPSILON = Decimal("0.005")

_CURRENCY_NOISE = re.compile(r"[\s$€£¥,]")


def to_money(value: Decimal | float | int | str) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(raw: str | None) -> Decimal | None:
    """Parse a display amount such as "$1,234.50", "-42.10" or "(12.00)".

    Returns None when the text is not a number.
    """
    if raw is None:
        return None
    text = _CURRENCY_NOISE.sub("", raw.strip())
    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]
    text = text.replace("−", "-")
    if not text:
        return None
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return -value if negative else value


def amounts_close(left: Decimal, right: Decimal, epsilon: Decimal) -> bool:
    return abs(left - right) < epsilon


def format_key_amount(value: Decimal) -> str:
    # Drop trailing zeros so "42.10" and "42.1" give the same dedup key
    normalized = value.normalize()
    if normalized == normalized.to_integral():
        return str(normalized.quantize(Decimal(1)))
    return format(normalized, "f")
