"""
Domain error taxonomy.

Services raise these; main.py renders them into the standard
{"error": {"code": ..., "message": ...}} envelope.
"""

from typing import Optional


class TradingError(Exception):
    code = "TRADING_ERROR"
    status_code = 400

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return {"error": body}


class NotFound(TradingError):
    """Purchase, expense, category, product, supplier or company missing."""

    code = "NOT_FOUND"
    status_code = 404


class ValidationError(TradingError):
    """Raised before any mutation when input is malformed."""

    code = "VALIDATION_ERROR"
    status_code = 422


class AlreadyApprovedNoOp(TradingError):
    """Supplemental approval requested with no expenses."""

    code = "ALREADY_APPROVED_NO_OP"
    status_code = 409


class IntegrityViolation(TradingError):
    """Delete blocked by non-pending receipts or a linked downstream sale."""

    code = "INTEGRITY_VIOLATION"
    status_code = 409


class LedgerUnavailable(Exception):
    """Transient supplier ledger failure; the posting is safe to retry."""
