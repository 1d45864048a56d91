import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from household_ledger.domain.amounts import parse_amount
from household_ledger.domain.dates import parse_ofx_date
from household_ledger.logger import get_logger
from household_ledger.models import NormalizeResult, RowError, SourceChannel, TransactionCandidate

logger = get_logger(__name__)

_BLOCK_RE = re.compile(r"<STMTTRN>(.*?)</STMTTRN>", re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True)
class OfxTransaction:
    fit_id: str
    posted: date
    amount: Decimal  # ledger convention, already inverted
    name: str
    memo: str
    trn_type: str
    check_number: str


def _extract_tag(block: str, tag: str) -> str:
    # SGML OFX leaves tags unclosed, XML OFX closes them; both stop at "<" or EOL
    match = re.search(rf"<{tag}>([^<\r\n]+)", block, re.IGNORECASE)
    return match.group(1).strip() if match else ""


def parse_ofx(text: str) -> tuple[list[OfxTransaction], list[RowError]]:
    """Pull every <STMTTRN> block out of an OFX/QFX document.

    Blocks without FITID, DTPOSTED or a numeric TRNAMT are reported and skipped.
    """
    transactions: list[OfxTransaction] = []
    errors: list[RowError] = []

    for index, match in enumerate(_BLOCK_RE.finditer(text), start=1):
        block = match.group(1)
        fit_id = _extract_tag(block, "FITID")
        dt_posted = _extract_tag(block, "DTPOSTED")
        trn_amt = _extract_tag(block, "TRNAMT")

        if not fit_id or not dt_posted or not trn_amt:
            errors.append(RowError(row=index, reason="missing FITID, DTPOSTED or TRNAMT"))
            continue

        posted = parse_ofx_date(dt_posted)
        raw_amount = parse_amount(trn_amt)
        if posted is None or raw_amount is None:
            errors.append(RowError(row=index, reason=f"bad DTPOSTED '{dt_posted}' or TRNAMT '{trn_amt}'"))
            continue

        name = _extract_tag(block, "NAME")
        memo = _extract_tag(block, "MEMO")
        transactions.append(
            OfxTransaction(
                fit_id=fit_id,
                posted=posted,
                # OFX: negative = money out. Ledger: positive = money out.
                amount=-raw_amount,
                name=name or memo,
                memo=memo,
                trn_type=_extract_tag(block, "TRNTYPE"),
                check_number=_extract_tag(block, "CHECKNUM"),
            )
        )

    return transactions, errors


def normalize_ofx(text: str, *, account_id: str | None = None) -> NormalizeResult:
    transactions, errors = parse_ofx(text)
    result = NormalizeResult(skipped=len(errors), errors=errors)
    for txn in transactions:
        result.candidates.append(
            TransactionCandidate(
                date=txn.posted,
                name=txn.name or txn.fit_id,
                amount=txn.amount,
                source_channel=SourceChannel.OFX,
                source_ref=txn.fit_id,
                account_id=account_id,
                check_number=txn.check_number or None,
                notes=txn.memo if txn.memo and txn.memo != txn.name else None,
            )
        )
    logger.info(
        "[IMPORT] OFX parsed: %s transaction(s), %s block(s) skipped",
        len(transactions),
        len(errors),
    )
    return result
