import csv
import io

from pydantic import BaseModel
from rapidfuzz import fuzz, process

from household_ledger.domain.amounts import parse_amount
from household_ledger.domain.dates import parse_statement_date
from household_ledger.logger import get_logger
from household_ledger.models import NormalizeResult, RowError, SourceChannel, TransactionCandidate

logger = get_logger(__name__)

# Known bank export layouts, tried before fuzzy matching
PRESETS: dict[str, dict[str, str]] = {
    "chase": {"date": "Posting Date", "name": "Description", "amount": "Amount"},
    "boa": {"date": "Date", "name": "Payee", "amount": "Amount"},
    "amex": {"date": "Date", "name": "Description", "amount": "Amount"},
}

HEADER_ALIASES: dict[str, tuple[str, ...]] = {
    "date": ("date", "posting date", "posted date", "transaction date", "trans date", "booking date"),
    "name": ("description", "payee", "name", "merchant", "details", "memo", "narrative"),
    "amount": ("amount", "transaction amount", "amt", "value", "debit/credit"),
}

ALIAS_MATCH_THRESHOLD = 85.0


class ColumnMapping(BaseModel):
    date: str
    name: str
    amount: str


def read_csv_text(text: str) -> tuple[list[str], list[dict[str, str]]]:
    """Split delimited text into its header row and data rows."""
    stripped = text.lstrip("﻿")
    first_line = stripped.split("\n", 1)[0]
    dialect: type[csv.Dialect] | csv.Dialect = csv.excel
    if "," not in first_line:
        try:
            dialect = csv.Sniffer().sniff(stripped[:2048], delimiters=";\t|")
        except csv.Error:
            dialect = csv.excel
    reader = csv.DictReader(io.StringIO(stripped), dialect=dialect)
    headers = [header.strip() for header in (reader.fieldnames or [])]
    rows: list[dict[str, str]] = []
    for raw_row in reader:
        row = {
            (key or "").strip(): (value or "").strip() if isinstance(value, str) else ""
            for key, value in raw_row.items()
        }
        if not any(row.values()):
            continue
        rows.append(row)
    return headers, rows


def _match_preset(headers: list[str]) -> ColumnMapping | None:
    by_lower = {header.lower(): header for header in headers}
    for preset_name, preset in PRESETS.items():
        if all(column.lower() in by_lower for column in preset.values()):
            logger.debug("[IMPORT] CSV headers match preset '%s'", preset_name)
            return ColumnMapping(**{field: by_lower[column.lower()] for field, column in preset.items()})
    return None


def suggest_mapping(headers: list[str]) -> ColumnMapping | None:
    """Guess which columns hold date, description and amount.

    Returns None when any of the three cannot be placed; the caller then
    supplies the mapping explicitly.
    """
    if not headers:
        return None
    preset = _match_preset(headers)
    if preset:
        return preset

    chosen: dict[str, str] = {}
    remaining = list(headers)
    for field_name, aliases in HEADER_ALIASES.items():
        best_header: str | None = None
        best_score = 0.0
        for alias in aliases:
            result = process.extractOne(
                alias,
                remaining,
                scorer=fuzz.token_sort_ratio,
                processor=str.lower,
            )
            if result and result[1] > best_score:
                best_header, best_score = result[0], result[1]
        if best_header is None or best_score < ALIAS_MATCH_THRESHOLD:
            return None
        chosen[field_name] = best_header
        remaining.remove(best_header)
    return ColumnMapping(**chosen)


def normalize_rows(
    rows: list[dict[str, str]],
    mapping: ColumnMapping,
    *,
    account_id: str | None = None,
    invert_amounts: bool = False,
) -> NormalizeResult:
    """Turn mapped CSV rows into candidates; bad rows are counted, never fatal.

    Row numbers in errors are 1-based data rows (the header is row 0).
    """
    result = NormalizeResult()
    for index, row in enumerate(rows, start=1):
        date_raw = row.get(mapping.date, "")
        name = row.get(mapping.name, "").strip()
        amount_raw = row.get(mapping.amount, "")

        if not date_raw or not name or not amount_raw:
            result.skipped += 1
            result.errors.append(RowError(row=index, reason="missing mapped field"))
            continue

        amount = parse_amount(amount_raw)
        if amount is None:
            result.skipped += 1
            result.errors.append(RowError(row=index, reason=f"non-numeric amount '{amount_raw}'"))
            continue

        txn_date = parse_statement_date(date_raw)
        if txn_date is None:
            result.skipped += 1
            result.errors.append(RowError(row=index, reason=f"unparseable date '{date_raw}'"))
            continue

        result.candidates.append(
            TransactionCandidate(
                date=txn_date,
                name=name,
                amount=-amount if invert_amounts else amount,
                source_channel=SourceChannel.CSV,
                account_id=account_id,
            )
        )

    if result.skipped:
        logger.info("[IMPORT] CSV rows skipped: %s of %s", result.skipped, len(rows))
    return result
