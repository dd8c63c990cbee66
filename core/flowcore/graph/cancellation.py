"""Run-wide cancellation, checked at node boundaries and raced against handler awaits."""

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from flowcore.errors import WorkflowCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """
    Shared by a run and all of its sub-runs.

    Example:
        token = CancellationToken()
        task = asyncio.create_task(executor.execute(definition, "hi", cancellation=token))
        ...
        token.cancel("user aborted")
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Workflow execution cancelled") -> None:
        """Request cancellation. Safe to call more than once."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()
            logger.info(f"⏹ Cancellation requested: {reason}")

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise WorkflowCancelledError(self.reason or "Workflow execution cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless cancellation fires first, then abort it."""
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work in done:
            return work.result()

        work.cancel()
        try:
            await work
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Abandoned work raised after cancellation: {e}")
        raise WorkflowCancelledError(self.reason or "Workflow execution cancelled")
