from enum import Enum


class LedgerError(Exception):
    """Base class for every error raised by the ledger core."""


class NotFoundError(LedgerError):
    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found")


class AuthorizationError(LedgerError):
    pass


class ConfigurationError(LedgerError):
    """Missing credentials or settings; fatal for the whole operation."""


class InvalidInputError(LedgerError):
    """The request itself cannot be processed (unmappable CSV, unsupported upload)."""


class ProviderError(LedgerError):
    """Transient failure talking to the aggregation provider."""

    def __init__(self, message: str, *, code: str | None = None):
        self.code = code
        super().__init__(message)


class RejectReason(str, Enum):
    UNBALANCED = "unbalanced"
    TOO_FEW_LINES = "too_few_lines"
    INVALID_LINE = "invalid_line"
    ALREADY_SPLIT = "already_split"
    NOT_SPLIT = "not_split"
    SPLIT_CHILD = "split_child"
    IS_TRANSFER = "is_transfer"
    ALREADY_LINKED = "already_linked"
    NOT_LINKED = "not_linked"
    SAME_TRANSACTION = "same_transaction"
    SAME_ACCOUNT = "same_account"
    OTHER_HOUSEHOLD = "other_household"
    USER_CLASSIFIED = "user_classified"
    INVALID_TRANSITION = "invalid_transition"
    UNKNOWN_CATEGORY = "unknown_category"
    INVALID_CONFIDENCE = "invalid_confidence"
    SPLIT_PARENT_AMOUNT = "split_parent_amount"
    RECEIPT_NOT_READY = "receipt_not_ready"


class RejectedError(LedgerError):
    """An invariant would be violated; nothing was written."""

    def __init__(self, reason: RejectReason, message: str):
        self.reason = reason
        self.message = message
        super().__init__(f"{reason.value}: {message}")


class SplitRejected(RejectedError):
    pass


class TransferRejected(RejectedError):
    pass


class ClassificationRejected(RejectedError):
    pass
