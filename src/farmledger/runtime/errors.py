from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class LedgerError(Exception):
    """Canonical error type for every ledger operation failure.

    A raised LedgerError always means the whole operation was rolled back.
    """

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


@dataclass
class LedgerForbiddenError(LedgerError):
    """Caller is not allowed to run an administrative operation."""


@dataclass
class LedgerPreconditionError(LedgerError):
    """Invalid input or state for the requested operation (unknown pool, withdraw > held, ...)."""


@dataclass
class LedgerArithmeticError(LedgerError):
    """Overflow/underflow or an out-of-range narrowing in the accounting formulas."""


@dataclass
class LedgerConfigError(LedgerError):
    """Fatal configuration error (e.g. accrual with total_weight == 0)."""


@dataclass
class LedgerTransferError(LedgerError):
    """An external call (asset transfer, rewarder, migrator) failed."""


@dataclass
class LedgerMigrationError(LedgerError):
    """Migration could not be performed or did not preserve the custody balance."""


__all__ = [
    "LedgerError",
    "LedgerForbiddenError",
    "LedgerPreconditionError",
    "LedgerArithmeticError",
    "LedgerConfigError",
    "LedgerTransferError",
    "LedgerMigrationError",
]
