from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, File, UploadFile

from household_ledger.api.dependencies import MemberHousehold, get_receipts
from household_ledger.api.schemas import ReceiptApplyRequest, ReceiptScanOut, TransactionOut
from household_ledger.services.receipts import ReceiptProcessor

router = APIRouter(prefix="/api/households/{household_id}/receipts")


@router.post("", response_model=ReceiptScanOut, status_code=202)
async def upload_receipt(
    household_id: MemberHousehold,
    background_tasks: BackgroundTasks,
    receipts: Annotated[ReceiptProcessor, Depends(get_receipts)],
    file: Annotated[UploadFile, File()],
) -> ReceiptScanOut:
    content = await file.read()
    scan = await receipts.upload(household_id, content, file.content_type or "")
    background_tasks.add_task(receipts.process, scan.id)
    return ReceiptScanOut.model_validate(scan)


@router.get("/{scan_id}", response_model=ReceiptScanOut)
async def get_receipt(
    scan_id: str,
    household_id: MemberHousehold,
    receipts: Annotated[ReceiptProcessor, Depends(get_receipts)],
) -> ReceiptScanOut:
    return ReceiptScanOut.model_validate(await receipts.get(household_id, scan_id))


@router.post("/{scan_id}/apply", response_model=list[TransactionOut])
async def apply_receipt(
    scan_id: str,
    req: ReceiptApplyRequest,
    household_id: MemberHousehold,
    receipts: Annotated[ReceiptProcessor, Depends(get_receipts)],
) -> list[TransactionOut]:
    children = await receipts.apply(household_id, scan_id, req.transaction_id, req.accepted_items)
    return [TransactionOut.model_validate(child) for child in children]
