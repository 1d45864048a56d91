import asyncio
import datetime as dt
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response

from household_ledger.api.dependencies import MemberHousehold, get_classification, get_ledger
from household_ledger.api.schemas import (
    BulkCategoryRequest,
    BulkDeleteRequest,
    CategoryAssign,
    SplitOut,
    SplitRequest,
    TransactionCreate,
    TransactionOut,
    TransactionUpdate,
    TransferLinkRequest,
    TransferOut,
)
from household_ledger.errors import InvalidInputError
from household_ledger.ledger.repository import Ledger
from household_ledger.models import (
    BulkResult,
    CashFlow,
    CategorySpend,
    SourceChannel,
    TransactionCandidate,
    TransactionFilters,
)
from household_ledger.services.classification import ClassificationPipeline

router = APIRouter(prefix="/api/households/{household_id}")

# Fields that may not be cleared through a patch
REQUIRED_FIELDS = ("date", "name", "amount")


def _out(rows: list) -> list[TransactionOut]:
    return [TransactionOut.model_validate(row) for row in rows]


def _default_period(start: dt.date | None, end: dt.date | None) -> tuple[dt.date, dt.date]:
    end = end or dt.date.today()
    start = start or end.replace(day=1)
    if start > end:
        raise InvalidInputError("start date is after end date")
    return start, end


@router.get("/transactions", response_model=list[TransactionOut])
async def list_transactions(
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
    search: str | None = None,
    account_id: str | None = None,
    category_id: str | None = None,
    start_date: dt.date | None = None,
    end_date: dt.date | None = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[TransactionOut]:
    filters = TransactionFilters(
        search=search,
        account_id=account_id,
        category_id=category_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return _out(await asyncio.to_thread(ledger.list_transactions, household_id, filters))


@router.post("/transactions", response_model=TransactionOut, status_code=201)
async def create_transaction(
    req: TransactionCreate,
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
    classification: Annotated[ClassificationPipeline, Depends(get_classification)],
) -> TransactionOut:
    if req.account_id:
        await asyncio.to_thread(ledger.get_account, household_id, req.account_id)
    candidate = TransactionCandidate(source_channel=SourceChannel.MANUAL, **req.model_dump())
    row = await asyncio.to_thread(ledger.create_manual, household_id, candidate)
    if req.category_id:
        await classification.remember(household_id, row.merchant_name or row.name, req.category_id)
    return TransactionOut.model_validate(row)


@router.get("/transactions/{transaction_id}", response_model=TransactionOut)
async def get_transaction(
    transaction_id: str,
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
) -> TransactionOut:
    return TransactionOut.model_validate(await asyncio.to_thread(ledger.get_transaction, household_id, transaction_id))


@router.patch("/transactions/{transaction_id}", response_model=TransactionOut)
async def update_transaction(
    transaction_id: str,
    req: TransactionUpdate,
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
) -> TransactionOut:
    changes = req.model_dump(exclude_unset=True)
    cleared = [field for field in REQUIRED_FIELDS if field in changes and changes[field] is None]
    if cleared:
        raise InvalidInputError(f"fields cannot be cleared: {', '.join(cleared)}")
    if changes.get("account_id"):
        await asyncio.to_thread(ledger.get_account, household_id, changes["account_id"])
    row = await asyncio.to_thread(ledger.update_transaction, household_id, transaction_id, changes)
    return TransactionOut.model_validate(row)


@router.put("/transactions/{transaction_id}/category", response_model=TransactionOut)
async def set_category(
    transaction_id: str,
    req: CategoryAssign,
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
    classification: Annotated[ClassificationPipeline, Depends(get_classification)],
) -> TransactionOut:
    row = await asyncio.to_thread(ledger.set_category, household_id, transaction_id, req.category_id)
    if req.category_id:
        await classification.remember(household_id, row.merchant_name or row.name, req.category_id)
    return TransactionOut.model_validate(row)


@router.delete("/transactions/{transaction_id}", status_code=204)
async def delete_transaction(
    transaction_id: str,
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
) -> Response:
    await asyncio.to_thread(ledger.delete_transaction, household_id, transaction_id)
    return Response(status_code=204)


@router.post("/transactions/bulk/category", response_model=BulkResult)
async def bulk_set_category(
    req: BulkCategoryRequest,
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
) -> BulkResult:
    return await asyncio.to_thread(ledger.bulk_set_category, household_id, req.transaction_ids, req.category_id)


@router.post("/transactions/bulk/delete", response_model=BulkResult)
async def bulk_delete(
    req: BulkDeleteRequest,
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
) -> BulkResult:
    return await asyncio.to_thread(ledger.bulk_delete, household_id, req.transaction_ids)


@router.post("/transactions/{transaction_id}/split", response_model=SplitOut, status_code=201)
async def split_transaction(
    transaction_id: str,
    req: SplitRequest,
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
) -> SplitOut:
    children = await asyncio.to_thread(ledger.split, household_id, transaction_id, req.lines)
    parent = await asyncio.to_thread(ledger.get_transaction, household_id, transaction_id)
    return SplitOut(parent=TransactionOut.model_validate(parent), children=_out(children))


@router.delete("/transactions/{transaction_id}/split", response_model=TransactionOut)
async def unsplit_transaction(
    transaction_id: str,
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
) -> TransactionOut:
    await asyncio.to_thread(ledger.unsplit, household_id, transaction_id)
    return TransactionOut.model_validate(await asyncio.to_thread(ledger.get_transaction, household_id, transaction_id))


@router.get("/transactions/{transaction_id}/children", response_model=list[TransactionOut])
async def split_children(
    transaction_id: str,
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
) -> list[TransactionOut]:
    return _out(await asyncio.to_thread(ledger.split_children, household_id, transaction_id))


@router.get("/transactions/{transaction_id}/transfer-candidates", response_model=list[TransactionOut])
async def transfer_candidates(
    transaction_id: str,
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
) -> list[TransactionOut]:
    return _out(await asyncio.to_thread(ledger.transfer_candidates, household_id, transaction_id))


@router.post("/transactions/{transaction_id}/transfer", response_model=TransferOut)
async def link_transfer(
    transaction_id: str,
    req: TransferLinkRequest,
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
) -> TransferOut:
    row, partner = await asyncio.to_thread(ledger.link_transfer, household_id, transaction_id, req.partner_id)
    return TransferOut(
        transaction=TransactionOut.model_validate(row),
        partner=TransactionOut.model_validate(partner),
    )


@router.delete("/transactions/{transaction_id}/transfer", response_model=TransferOut)
async def unlink_transfer(
    transaction_id: str,
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
) -> TransferOut:
    partner = await asyncio.to_thread(ledger.unlink_transfer, household_id, transaction_id)
    row = await asyncio.to_thread(ledger.get_transaction, household_id, transaction_id)
    return TransferOut(
        transaction=TransactionOut.model_validate(row),
        partner=TransactionOut.model_validate(partner) if partner is not None else None,
    )


@router.get("/reports/cash-flow", response_model=CashFlow)
async def cash_flow(
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
    start_date: dt.date | None = None,
    end_date: dt.date | None = None,
) -> CashFlow:
    start, end = _default_period(start_date, end_date)
    return await asyncio.to_thread(ledger.cash_flow, household_id, start, end)


@router.get("/reports/spending", response_model=list[CategorySpend])
async def spending_by_category(
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
    start_date: dt.date | None = None,
    end_date: dt.date | None = None,
) -> list[CategorySpend]:
    start, end = _default_period(start_date, end_date)
    return await asyncio.to_thread(ledger.spending_by_category, household_id, start, end)


@router.get("/reports/recent", response_model=list[TransactionOut])
async def recent_transactions(
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
    limit: Annotated[int, Query(ge=1, le=50)] = 10,
) -> list[TransactionOut]:
    return _out(await asyncio.to_thread(ledger.recent, household_id, limit))
