"""
Transaction support shared by the storage backends.

DESIGN DECISION: A single writer at a time. Appending to the cash ledger is
read-then-write (read the latest balance, compute the next one, insert),
and every engine command pairs a record update with a ledger append. Both
are only correct when no other command interleaves, so every command runs
under one lock per store.

All-or-nothing is delegated to the backend through three hooks:
- _begin():    called once the lock is held
- _commit():   called when the block finished without error
- _rollback(): called when the block raised; must undo every write

Nested transaction() calls in the same task join the outer transaction, so
an engine command can call another engine's command without deadlocking.
"""

import asyncio
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import AsyncIterator

import structlog

from natillera.services.storage.interface import RecordStore


logger = structlog.get_logger(__name__)


class BaseRecordStore(RecordStore):
    """RecordStore with the locking and nesting rules implemented."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._in_transaction: ContextVar[bool] = ContextVar(
            f"natillera_transaction_{id(self)}",
            default=False,
        )

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction.get()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._in_transaction.get():
            yield
            return

        async with self._lock:
            token = self._in_transaction.set(True)
            try:
                await self._begin()
                try:
                    yield
                except BaseException as exc:
                    logger.warning(
                        "transaction_rolled_back",
                        error_type=type(exc).__name__,
                        error=str(exc),
                    )
                    await self._safe_rollback()
                    raise
                await self._commit()
            finally:
                self._in_transaction.reset(token)

    async def _safe_rollback(self) -> None:
        # The original exception is what the caller must see.
        try:
            await self._rollback()
        except Exception as e:
            logger.error("transaction_rollback_failed", error=str(e))

    async def _begin(self) -> None:
        pass

    async def _commit(self) -> None:
        pass

    async def _rollback(self) -> None:
        pass
