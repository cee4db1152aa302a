"""
Cooperative cancellation.

A CancellationToken is threaded through every network call of one logical
operation. CancellationController owns at most one live token per operation
kind: starting a new generation aborts the previous generation, starting a
new conversation turn aborts the previous one.
"""

import asyncio
from contextlib import asynccontextmanager
from enum import Enum
from typing import Awaitable, Optional, TypeVar

from shared.logging import get_logger

from .errors import AbortedError

log = get_logger("llm", "cancellation")

T = TypeVar("T")


class OperationKind(str, Enum):
    """Independent operation streams; one live token each."""
    GENERATION = "generation"
    CONVERSATION = "conversation"


class CancellationToken:
    """
    Abort signal shared by all calls of one operation.

    Once cancelled it stays cancelled; guard() raises AbortedError for calls
    that are pending or not yet started.
    """

    def __init__(self, label: str = ""):
        self.label = label
        self.reason: Optional[str] = None
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "stopped by user") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        log.info("llm.cancellation.cancelled", label=self.label, reason=reason)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AbortedError(self.reason or "stopped by user")

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` unless the token fires first.

        If the token fires while the awaitable is pending, the awaitable is
        cancelled and AbortedError is raised. A result that is already
        available wins over a simultaneous cancellation.
        """
        if self._event.is_set():
            # Close an unstarted coroutine so it does not warn
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()

        work = asyncio.ensure_future(awaitable)
        stop = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            work.cancel()
            raise
        finally:
            stop.cancel()

        if work.done():
            return work.result()

        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        raise AbortedError(self.reason or "stopped by user")


class CancellationController:
    """
    Ownership of the live token per operation kind.

    Usage:
        controller = CancellationController()

        async with controller.operation(OperationKind.GENERATION) as token:
            await pipeline.analyze(..., token=token)

        # elsewhere (e.g. a Stop button or Ctrl+C)
        controller.cancel(OperationKind.GENERATION)
    """

    def __init__(self):
        self._active: dict[OperationKind, CancellationToken] = {}

    def active(self, kind: OperationKind) -> Optional[CancellationToken]:
        return self._active.get(kind)

    def begin(self, kind: OperationKind) -> CancellationToken:
        """Abort the current token of this kind and install a fresh one."""
        previous = self._active.get(kind)
        if previous is not None:
            previous.cancel("superseded by a new operation")
            log.info("llm.cancellation.superseded", kind=kind.value)
        token = CancellationToken(label=kind.value)
        self._active[kind] = token
        return token

    def finish(self, kind: OperationKind, token: CancellationToken) -> None:
        """Release the slot, but only if `token` still owns it."""
        if self._active.get(kind) is token:
            del self._active[kind]

    def cancel(self, kind: OperationKind, reason: str = "stopped by user") -> bool:
        """Stop the live operation of this kind. Returns False if none was running."""
        token = self._active.pop(kind, None)
        if token is None:
            return False
        token.cancel(reason)
        return True

    def cancel_all(self, reason: str = "stopped by user") -> None:
        for kind in list(self._active):
            self.cancel(kind, reason)

    @asynccontextmanager
    async def operation(self, kind: OperationKind):
        token = self.begin(kind)
        try:
            yield token
        finally:
            self.finish(kind, token)
