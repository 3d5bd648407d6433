from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from farmledger.runtime.errors import (
    LedgerArithmeticError,
    LedgerConfigError,
    LedgerError,
    LedgerForbiddenError,
    LedgerPreconditionError,
)


@dataclass
class ApiError(Exception):
    status_code: int
    code: str
    message: str
    details: Dict[str, Any]

    @staticmethod
    def bad_request(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, message, details or {})

    @staticmethod
    def forbidden(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(403, code, message, details or {})

    @staticmethod
    def not_found(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(404, code, message, details or {})

    @staticmethod
    def conflict(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(409, code, message, details or {})

    @staticmethod
    def internal(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(500, code, message, details or {})

    def to_json(self) -> Dict[str, Any]:
        return {"ok": False, "error": {"code": self.code, "message": self.message, "details": self.details}}

    @staticmethod
    def from_ledger_error(e: LedgerError) -> "ApiError":
        details = e.details if isinstance(e.details, dict) else {"details": e.details}
        if isinstance(e, LedgerForbiddenError):
            return ApiError.forbidden(e.code, e.reason, details)
        if isinstance(e, LedgerPreconditionError):
            if e.code == "not_found":
                return ApiError.not_found(e.code, e.reason, details)
            return ApiError.bad_request(e.code, e.reason, details)
        if isinstance(e, (LedgerConfigError, LedgerArithmeticError)):
            return ApiError.internal(e.code, e.reason, details)
        return ApiError.conflict(e.code, e.reason, details)
