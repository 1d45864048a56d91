import datetime as dt
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from household_ledger.ingest.csv_rows import ColumnMapping
from household_ledger.models import ClassifiedBy, MemberRole, ScanStatus, SourceChannel, SplitLine


class OrmModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class HouseholdCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    auto_classify_imports: bool = False


class HouseholdSettings(BaseModel):
    auto_classify_imports: bool


class HouseholdOut(OrmModel):
    id: str
    name: str
    auto_classify_imports: bool


class MemberCreate(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    role: MemberRole = MemberRole.MEMBER


class MemberOut(OrmModel):
    household_id: str
    user_id: str
    role: MemberRole


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)


class CategoryOut(OrmModel):
    id: str
    name: str
    is_system: bool


class AccountCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    type: str = "depository"
    subtype: str | None = None
    mask: str | None = None


class AccountOut(OrmModel):
    id: str
    name: str
    official_name: str | None = None
    type: str
    subtype: str | None = None
    mask: str | None = None
    connection_id: str | None = None
    balance_current: Decimal | None = None
    balance_available: Decimal | None = None


class TransactionOut(OrmModel):
    id: str
    household_id: str
    date: dt.date
    name: str
    merchant_name: str | None = None
    amount: Decimal
    account_id: str | None = None
    notes: str | None = None
    check_number: str | None = None
    category_id: str | None = None
    classified_by: ClassifiedBy
    ai_confidence: float | None = None
    source_channel: SourceChannel
    external_id: str | None = None
    import_key: str | None = None
    is_split: bool
    parent_transaction_id: str | None = None
    is_transfer: bool
    transfer_pair_id: str | None = None


class TransactionCreate(BaseModel):
    date: dt.date
    name: str = Field(min_length=1, max_length=300)
    amount: Decimal
    merchant_name: str | None = None
    account_id: str | None = None
    notes: str | None = None
    check_number: str | None = None
    category_id: str | None = None


class TransactionUpdate(BaseModel):
    date: dt.date | None = None
    name: str | None = Field(default=None, min_length=1, max_length=300)
    amount: Decimal | None = None
    merchant_name: str | None = None
    account_id: str | None = None
    notes: str | None = None
    check_number: str | None = None


class CategoryAssign(BaseModel):
    category_id: str | None


class BulkCategoryRequest(BaseModel):
    transaction_ids: list[str] = Field(min_length=1)
    category_id: str | None


class BulkDeleteRequest(BaseModel):
    transaction_ids: list[str] = Field(min_length=1)


class SplitRequest(BaseModel):
    lines: list[SplitLine]


class SplitOut(BaseModel):
    parent: TransactionOut
    children: list[TransactionOut]


class TransferLinkRequest(BaseModel):
    partner_id: str


class TransferOut(BaseModel):
    transaction: TransactionOut
    partner: TransactionOut | None


class CsvPreviewOut(BaseModel):
    headers: list[str]
    suggested_mapping: ColumnMapping | None
    preview: list[dict[str, str]]


class LinkTokenOut(BaseModel):
    link_token: str


class ExchangeRequest(BaseModel):
    public_token: str
    institution_name: str | None = None


class ConnectionOut(OrmModel):
    id: str
    provider_item_id: str
    institution_name: str | None = None
    cursor: str | None = None
    last_error: str | None = None
    last_synced_at: dt.datetime | None = None


class ExchangeOut(BaseModel):
    connection: ConnectionOut
    accounts: int


class ReceiptScanOut(OrmModel):
    id: str
    status: ScanStatus
    media_type: str
    extracted_data: dict[str, Any] | None = None
    line_items: list[dict[str, Any]] | None = None
    error: str | None = None


class ReceiptApplyRequest(BaseModel):
    transaction_id: str
    accepted_items: list[int] | None = None
