"""
Typed exceptions for StockPilot.

Every error carries a machine-readable ``code`` so API layers can map it
without parsing messages:

    StockPilotError (base)
    +-- InputValidationError   INVALID_INPUT
    +-- ConfigurationError     CONFIGURATION_ERROR
    +-- UpstreamFetchError     UPSTREAM_FETCH_FAILED
    +-- ComputationError       COMPUTATION_FAILED

Data inconsistencies (more stock observed than ever delivered) are not
errors; they are flagged on the valuation result.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from stockpilot.models.inventory import SizeKey


class StockPilotError(Exception):
    """Base class for all StockPilot errors."""

    code: str = "STOCKPILOT_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "details": self.message}


class InputValidationError(StockPilotError):
    """Caller supplied an invalid company, product number, window or extract row."""

    code = "INVALID_INPUT"

    def __init__(self, message: str, field: str | None = None, row: int | None = None) -> None:
        super().__init__(message)
        self.field = field
        self.row = row

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        if self.row is not None:
            data["row"] = self.row
        return data


class ConfigurationError(StockPilotError):
    """Missing credentials or an unusable connector configuration."""

    code = "CONFIGURATION_ERROR"


class UpstreamFetchError(StockPilotError):
    """A ledger, snapshot or POS source could not be read."""

    code = "UPSTREAM_FETCH_FAILED"

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["source"] = self.source
        return data


class ComputationError(StockPilotError):
    """Unexpected input shape while valuing a single size."""

    code = "COMPUTATION_FAILED"

    def __init__(self, message: str, size_key: SizeKey | None = None) -> None:
        super().__init__(message)
        self.size_key = size_key
