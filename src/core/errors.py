# src/core/errors.py

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    MALFORMED_RESPONSE = "malformed_response"
    BUSINESS_VALIDATION = "business_validation"
    LEDGER_TRANSACTION = "ledger_transaction"
    AUTHENTICATION = "authentication"


class PortfolioAgentError(Exception):
    """Base class for every failure the services raise on write and paid paths."""

    kind: ErrorKind = ErrorKind.UPSTREAM_UNAVAILABLE

    def __init__(self, message: str, *, upstream: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.upstream = upstream

    def to_dict(self):
        data = {"error": self.kind.value, "message": self.message}
        if self.upstream:
            data["upstream"] = self.upstream
        return data


class UpstreamUnavailableError(PortfolioAgentError):
    """Network failure or non-2xx status from an upstream service."""

    kind = ErrorKind.UPSTREAM_UNAVAILABLE

    def __init__(self, message: str, *, upstream: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, upstream=upstream)
        self.status_code = status_code


class MalformedResponseError(PortfolioAgentError):
    """The upstream answered, but not in the shape we rely on."""

    kind = ErrorKind.MALFORMED_RESPONSE


class BusinessValidationError(PortfolioAgentError):
    """Input rejected before any side effect (bad amount, unknown action kind)."""

    kind = ErrorKind.BUSINESS_VALIDATION


class ValuationError(BusinessValidationError):
    """A computed per-asset value is negative and cannot be summed."""


class LedgerTransactionError(PortfolioAgentError):
    """A ledger receipt came back with a status other than SUCCESS, or never came back (status UNKNOWN)."""

    kind = ErrorKind.LEDGER_TRANSACTION

    def __init__(self, message: str, *, status: str, transaction_id: Optional[str] = None):
        super().__init__(message, upstream="ledger")
        self.status = status
        self.transaction_id = transaction_id

    def to_dict(self):
        data = super().to_dict()
        data["status"] = self.status
        if self.transaction_id:
            data["transaction_id"] = self.transaction_id
        return data


class AuthenticationError(PortfolioAgentError):
    kind = ErrorKind.AUTHENTICATION
