"""Stage-then-commit unit of work over an ``AsyncSession``."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Executable


@dataclass(slots=True)
class StagedOperation:
    """One mutation waiting for :meth:`UnitOfWork.commit`."""

    label: str
    statement: Executable | None = None
    instance: Any | None = None
    expect_rowcount: int | None = None
    on_mismatch: Callable[[], Exception] | None = None


class UnitOfWork:
    """Collects mutations and applies them all-or-nothing.

    Statements run in staging order inside the session's transaction. When a
    statement stages ``expect_rowcount`` and the database reports a different
    count (for example a conditional ``UPDATE ... WHERE status = 'pending'``
    that lost a race), the whole unit is rolled back and ``on_mismatch()`` is
    raised.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._operations: list[StagedOperation] = []

    @property
    def staged(self) -> tuple[StagedOperation, ...]:
        return tuple(self._operations)

    def stage(
        self,
        label: str,
        statement: Executable,
        *,
        expect_rowcount: int | None = None,
        on_mismatch: Callable[[], Exception] | None = None,
    ) -> None:
        self._operations.append(
            StagedOperation(
                label=label,
                statement=statement,
                expect_rowcount=expect_rowcount,
                on_mismatch=on_mismatch,
            )
        )

    def add(self, label: str, instance: Any) -> None:
        self._operations.append(StagedOperation(label=label, instance=instance))

    async def commit(self) -> None:
        try:
            for operation in self._operations:
                await self._apply(operation)
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise
        finally:
            self._operations.clear()

    async def _apply(self, operation: StagedOperation) -> None:
        if operation.instance is not None:
            self._session.add(operation.instance)
            await self._session.flush()
            return

        result = await self._session.execute(operation.statement)
        if operation.expect_rowcount is None:
            return
        if result.rowcount != operation.expect_rowcount:
            logger.info(
                "Unit of work operation matched unexpected row count",
                operation=operation.label,
                expected=operation.expect_rowcount,
                actual=result.rowcount,
            )
            if operation.on_mismatch is not None:
                raise operation.on_mismatch()
            raise RuntimeError(f"Staged operation '{operation.label}' matched {result.rowcount} rows")


__all__ = ["StagedOperation", "UnitOfWork"]
