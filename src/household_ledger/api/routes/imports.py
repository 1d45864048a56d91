from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import ValidationError

from household_ledger.api.dependencies import MemberHousehold, get_imports
from household_ledger.api.schemas import CsvPreviewOut
from household_ledger.errors import InvalidInputError
from household_ledger.ingest.csv_rows import ColumnMapping
from household_ledger.models import ImportSummary
from household_ledger.services.imports import ImportService

router = APIRouter(prefix="/api/households/{household_id}/imports")


async def _read_text(upload: UploadFile) -> str:
    raw = await upload.read()
    if not raw:
        raise InvalidInputError("uploaded file is empty")
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def _mapping_from_form(
    date_column: str | None, name_column: str | None, amount_column: str | None
) -> ColumnMapping | None:
    if not any((date_column, name_column, amount_column)):
        return None
    try:
        return ColumnMapping(date=date_column, name=name_column, amount=amount_column)
    except ValidationError:
        raise InvalidInputError("a column mapping needs date, name and amount columns") from None


@router.post("/csv/preview", response_model=CsvPreviewOut)
async def preview_csv(
    household_id: MemberHousehold,
    imports: Annotated[ImportService, Depends(get_imports)],
    file: Annotated[UploadFile, File()],
) -> CsvPreviewOut:
    headers, mapping, rows = imports.preview_csv(await _read_text(file))
    return CsvPreviewOut(headers=headers, suggested_mapping=mapping, preview=rows)


@router.post("/csv", response_model=ImportSummary)
async def import_csv(
    household_id: MemberHousehold,
    imports: Annotated[ImportService, Depends(get_imports)],
    file: Annotated[UploadFile, File()],
    account_id: Annotated[str | None, Form()] = None,
    invert_amounts: Annotated[bool, Form()] = False,
    date_column: Annotated[str | None, Form()] = None,
    name_column: Annotated[str | None, Form()] = None,
    amount_column: Annotated[str | None, Form()] = None,
) -> ImportSummary:
    mapping = _mapping_from_form(date_column, name_column, amount_column)
    return await imports.import_csv(
        household_id,
        await _read_text(file),
        mapping,
        account_id=account_id or None,
        invert_amounts=invert_amounts,
    )


@router.post("/ofx", response_model=ImportSummary)
async def import_ofx(
    household_id: MemberHousehold,
    imports: Annotated[ImportService, Depends(get_imports)],
    file: Annotated[UploadFile, File()],
    account_id: Annotated[str | None, Form()] = None,
) -> ImportSummary:
    return await imports.import_ofx(household_id, await _read_text(file), account_id=account_id or None)
