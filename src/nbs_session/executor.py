"""
Per-session serial execution.

SerialExecutor runs submitted coroutines one at a time, in submission order,
on a single worker task. Each submission returns an asyncio.Future for its
result and may register a completion callback that receives None on success
or the error on failure. cancel_all() fails everything queued with
OperationCancelled and cancels the running operation; the worker waits for
that operation to unwind before starting the next one, so no two
operations ever overlap.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, TypeVar

from nbs_session.errors import OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")

Completion = Callable[[BaseException | None], None]


@dataclass
class _WorkItem(Generic[T]):
    fn: Callable[[], Awaitable[T]]
    name: str
    future: asyncio.Future[T]
    task: asyncio.Task[T] | None = field(default=None)


def _notify(complete: Completion, future: asyncio.Future[Any]) -> None:
    if future.cancelled():
        error: BaseException | None = OperationCancelled("Operation was cancelled")
    else:
        error = future.exception()
    try:
        complete(error)
    except Exception:
        logger.exception("Completion callback raised")


class SerialExecutor:
    """
    FIFO single-worker queue bound to the running event loop.

    Attributes:
        in_flight: Number of operations currently running (0 or 1)
        max_in_flight: Highest value in_flight has reached
    """

    def __init__(self, name: str = "session") -> None:
        self.name = name
        self.in_flight = 0
        self.max_in_flight = 0
        self._queue: asyncio.Queue[_WorkItem[Any]] | None = None
        self._worker: asyncio.Task[None] | None = None
        self._current: _WorkItem[Any] | None = None

    @property
    def pending(self) -> int:
        """Number of operations waiting to run."""
        return self._queue.qsize() if self._queue is not None else 0

    @property
    def current(self) -> str | None:
        """Name of the running operation, if any."""
        return self._current.name if self._current is not None else None

    def submit(
        self,
        fn: Callable[[], Awaitable[T]],
        name: str,
        complete: Completion | None = None,
    ) -> asyncio.Future[T]:
        """
        Queue an operation.

        Args:
            fn: Zero-argument callable returning the coroutine to run
            name: Operation name for logs and cancellation messages
            complete: Optional callback, called with None or the error

        Returns:
            Future resolved with the operation's result or error
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()
        if complete is not None:
            future.add_done_callback(lambda f: _notify(complete, f))

        if self._queue is None:
            self._queue = asyncio.Queue()
        self._queue.put_nowait(_WorkItem(fn=fn, name=name, future=future))

        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._run())

        return future

    def cancel_all(self, reason: str = "disconnect", keep: str | None = None) -> int:
        """
        Fail queued operations and cancel the running one.

        Args:
            reason: Recorded in each OperationCancelled message
            keep: Operation name to leave queued or running, in order

        Returns:
            Number of operations cancelled
        """
        cancelled = 0

        if self._queue is not None:
            kept: list[_WorkItem[Any]] = []
            while not self._queue.empty():
                item = self._queue.get_nowait()
                if item.future.done():
                    continue
                if keep is not None and item.name == keep:
                    kept.append(item)
                    continue
                item.future.set_exception(
                    OperationCancelled(f"{item.name} cancelled by {reason}")
                )
                cancelled += 1
            for item in kept:
                self._queue.put_nowait(item)

        current = self._current
        if (
            current is not None
            and not current.future.done()
            and (keep is None or current.name != keep)
        ):
            current.future.set_exception(
                OperationCancelled(f"{current.name} cancelled by {reason}")
            )
            if current.task is not None:
                current.task.cancel()
            cancelled += 1

        if cancelled:
            logger.debug("%s: cancelled %d operation(s) (%s)", self.name, cancelled, reason)
        return cancelled

    async def close(self) -> None:
        """Cancel everything and stop the worker."""
        self.cancel_all("close")
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            item = await self._queue.get()
            if item.future.done():
                continue

            task = asyncio.ensure_future(item.fn())
            item.task = task
            item.future.add_done_callback(
                lambda f, t=task: t.cancel() if f.cancelled() else None
            )

            self._current = item
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            try:
                await asyncio.wait([task])
            except asyncio.CancelledError:
                task.cancel()
                raise
            finally:
                self.in_flight -= 1
                self._current = None

            if item.future.done():
                # Already cancelled; consume the outcome so it is not reported
                if not task.cancelled():
                    task.exception()
                continue

            if task.cancelled():
                item.future.set_exception(OperationCancelled(f"{item.name} was cancelled"))
            elif task.exception() is not None:
                item.future.set_exception(task.exception())
            else:
                item.future.set_result(task.result())
