import datetime as dt
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from household_ledger.domain.amounts import to_money


class ClassifiedBy(str, Enum):
    NONE = "none"
    USER = "user"
    AI = "ai"
    PROVIDER = "provider"


class SourceChannel(str, Enum):
    PROVIDER = "provider"
    MANUAL = "manual"
    CSV = "csv"
    OFX = "ofx"
    EMAIL = "email"
    RECEIPT = "receipt"


class ScanStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class MemberRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class TransactionCandidate(BaseModel):
    """Canonical record produced by every ingestion channel."""
    date: dt.date
    name: str
    amount: Decimal
    source_channel: SourceChannel
    merchant_name: str | None = None
    external_id: str | None = None
    # Channel-native record id that is not a provider id (OFX FITID)
    source_ref: str | None = None
    account_id: str | None = None
    check_number: str | None = None
    notes: str | None = None
    category_id: str | None = None
    classified_by: ClassifiedBy = ClassifiedBy.NONE

    @field_validator("amount")
    @classmethod
    def round_to_cents(cls, value: Decimal) -> Decimal:
        return to_money(value)


class RowError(BaseModel):
    row: int
    reason: str


class NormalizeResult(BaseModel):
    candidates: list[TransactionCandidate] = Field(default_factory=list)
    skipped: int = 0
    errors: list[RowError] = Field(default_factory=list)


class IngestSummary(BaseModel):
    added: int = 0
    modified: int = 0
    skipped: int = 0
    errors: int = 0


class SyncSummary(IngestSummary):
    removed: int = 0
    pages: int = 0
    status: str = "idle"
    error: str | None = None
    balances_refreshed: bool = False


class ImportSummary(IngestSummary):
    row_errors: list[RowError] = Field(default_factory=list)
    classified: int | None = None
    classify_error: str | None = None


class ClassificationSummary(BaseModel):
    classified: int = 0
    skipped: int = 0
    errors: int = 0


class BulkResult(BaseModel):
    requested: int = 0
    succeeded: int = 0
    failed: int = 0


class Category(BaseModel):
    name: str
    id: str | None = None


class CategorizationResult(BaseModel):
    category: Category
    confidence: float  # 0.0 to 1.0
    source: str  # "memory_exact", "memory_fuzzy", "llm"


class SplitLine(BaseModel):
    amount: Decimal
    name: str | None = None
    category_id: str | None = None
    ai_confidence: float | None = None
    # Category suggested by the receipt extractor rather than chosen by a person
    suggested: bool = False

    @field_validator("amount")
    @classmethod
    def round_to_cents(cls, value: Decimal) -> Decimal:
        return to_money(value)


class ReceiptLineItem(BaseModel):
    name: str
    amount: Decimal
    category: str | None = None
    category_id: str | None = None
    confidence: float | None = None


class ReceiptSummary(BaseModel):
    merchant: str | None = None
    date: str | None = None
    subtotal: Decimal | None = None
    tax: Decimal | None = None
    total: Decimal | None = None


class ReceiptExtraction(BaseModel):
    summary: ReceiptSummary = Field(default_factory=ReceiptSummary)
    line_items: list[ReceiptLineItem] = Field(default_factory=list)


class CashFlow(BaseModel):
    income: Decimal
    expenses: Decimal
    net: Decimal


class CategorySpend(BaseModel):
    category_id: str | None
    category_name: str | None
    total: Decimal


class TransactionFilters(BaseModel):
    search: str | None = None
    account_id: str | None = None
    category_id: str | None = None
    start_date: dt.date | None = None
    end_date: dt.date | None = None
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)
