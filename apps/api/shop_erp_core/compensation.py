"""
Compensating-action bookkeeping for multi-step writes.

The row store has no transaction spanning two calls, so every compound
operation registers the inverse of each write right after it succeeds.
If a later step raises, the inverses run newest-first:

    Started -> PartiallyApplied -> Reconciled | Abandoned

``Reconciled`` means either every step succeeded, or every applied step was
undone and the original error is re-raised untouched. ``Abandoned`` means an
inverse itself failed; a PartialConsistency naming each unrepaired write
(table, row, delta) replaces the original error.
"""
from __future__ import annotations

import enum
import logging
from decimal import Decimal
from typing import Any, Awaitable, Callable, List

from shop_erp_core.errors import Inconsistency, LedgerError, PartialConsistency

logger = logging.getLogger(__name__)

Undo = Callable[[], Awaitable[Any]]


class OperationState(str, enum.Enum):
    STARTED = "Started"
    PARTIALLY_APPLIED = "PartiallyApplied"
    RECONCILED = "Reconciled"
    ABANDONED = "Abandoned"


class _Compensation:
    __slots__ = ("undo", "inconsistency")

    def __init__(self, undo: Undo, inconsistency: Inconsistency):
        self.undo = undo
        self.inconsistency = inconsistency


class CompoundOperation:
    def __init__(self, name: str):
        self.name = name
        self.state = OperationState.STARTED
        self._pending: List[_Compensation] = []

    def applied(
        self,
        undo: Undo,
        *,
        table: str,
        row_id: int | None = None,
        delta: Decimal | None = None,
        note: str,
    ) -> None:
        """Record a successful write together with the call that undoes it."""
        self._pending.append(_Compensation(
            undo,
            Inconsistency(table=table, row_id=row_id, delta=delta, note=note),
        ))
        self.state = OperationState.PARTIALLY_APPLIED

    def disarm(self) -> None:
        """Keep what was applied even if the block raises from here on."""
        self._pending.clear()

    async def rollback(self, cause: BaseException) -> None:
        failed: List[Inconsistency] = []
        for comp in reversed(self._pending):
            try:
                await comp.undo()
            except LedgerError as e:
                logger.error(
                    "%s: compensation failed for %s: %s",
                    self.name, comp.inconsistency.describe(), e.message,
                )
                failed.append(comp.inconsistency.model_copy(
                    update={"note": f"{comp.inconsistency.note}; undo failed: {e.message}"}
                ))
            else:
                logger.info("%s: compensated %s", self.name, comp.inconsistency.describe())
        self._pending.clear()

        if failed:
            self.state = OperationState.ABANDONED
            raise PartialConsistency(
                f"{self.name} failed ({cause}) and could not be rolled back",
                failed,
                operation=self.name,
            ) from cause
        self.state = OperationState.RECONCILED

    async def __aenter__(self) -> "CompoundOperation":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc is None:
            self._pending.clear()
            self.state = OperationState.RECONCILED
            return False
        if self._pending:
            logger.warning("%s failed after partial writes, compensating: %s", self.name, exc)
            await self.rollback(exc)
        return False
