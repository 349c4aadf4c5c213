from __future__ import annotations

from decimal import Decimal
from typing import Any, List

from pydantic import BaseModel


class Inconsistency(BaseModel):
    """One write that could not be applied or undone and needs a manual fix."""
    table: str
    row_id: int | None = None
    delta: Decimal | None = None
    note: str

    def describe(self) -> str:
        row = f"#{self.row_id}" if self.row_id is not None else ""
        delta = f" delta={self.delta}" if self.delta is not None else ""
        return f"{self.table}{row}{delta}: {self.note}"


class LedgerError(Exception):
    status_code = 400
    code = "ledger_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        return self.message

    def to_detail(self) -> dict:
        detail = {"code": self.code, "message": self.message}
        detail.update(self.context)
        return detail


class ValidationError(LedgerError):
    """Bad input. Raised before any write."""
    status_code = 422
    code = "validation_error"


class MovementAlreadyCancelled(ValidationError):
    status_code = 409
    code = "movement_already_cancelled"

    def __init__(self, movement_id: int):
        super().__init__(f"Movement {movement_id} is already cancelled", movement_id=movement_id)


class NotFound(LedgerError):
    status_code = 404
    code = "not_found"

    def __init__(self, table: str, row_id: Any):
        super().__init__(f"{table} #{row_id} not found", table=table, row_id=row_id)


class InsufficientStock(LedgerError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, item_id: int, required: Decimal, available: Decimal, ledger: str = "inventory"):
        super().__init__(
            f"{ledger} #{item_id}: insufficient stock. requested={required} available={available}",
            table=ledger,
            item_id=item_id,
            required=str(required),
            available=str(available),
        )


class OrderNotFeasible(LedgerError):
    status_code = 409
    code = "order_not_feasible"


class ConflictError(LedgerError):
    """A compare-and-swap quantity write kept losing against concurrent writers."""
    status_code = 409
    code = "concurrent_update"

    def __init__(self, table: str, row_id: int, attempts: int):
        super().__init__(
            f"{table} #{row_id} changed concurrently {attempts} times; reload and retry",
            table=table,
            row_id=row_id,
        )


class RemoteWriteFailure(LedgerError):
    """The row store rejected or failed a call."""
    status_code = 502
    code = "remote_write_failure"

    def __init__(self, table: str, operation: str, detail: str):
        super().__init__(
            f"{operation} on {table} failed: {detail}",
            table=table,
            operation=operation,
            detail=detail,
        )
        self.table = table
        self.operation = operation


class PartialConsistency(LedgerError):
    """A compensating write failed; the store is left inconsistent."""
    status_code = 500
    code = "partial_consistency"

    def __init__(self, message: str, inconsistencies: List[Inconsistency], **context: Any):
        super().__init__(message, **context)
        self.summary = message
        self.inconsistencies = list(inconsistencies)
        self.message = self._render()

    def _render(self) -> str:
        text = "; ".join(i.describe() for i in self.inconsistencies)
        return f"{self.summary}. Manual correction required: {text}" if text else self.summary

    def add(self, inconsistency: Inconsistency) -> None:
        self.inconsistencies.append(inconsistency)
        self.message = self._render()

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail["inconsistencies"] = [i.model_dump(mode="json") for i in self.inconsistencies]
        return detail


class IncompleteConsumption(PartialConsistency):
    """Some recipe lines of a production event were not applied."""
    code = "incomplete_consumption"
