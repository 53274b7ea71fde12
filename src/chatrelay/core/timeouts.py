"""Named, cancelable timers and a wall-clock deadline for async operations.

:class:`TimeoutRegistry` keeps at most one pending timer per caller-chosen
key.  Scheduling under a key that already has a live timer cancels the old
one first, so timers are replaced rather than leaked.  The registry is an
explicit object owned by the application (created at startup, drained with
:meth:`TimeoutRegistry.cancel_all` at shutdown); tests create their own.

All mutations happen on the event loop thread without an intervening
``await``, which makes install / remove / cancel atomic per key.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

import structlog

from chatrelay.config import settings
from chatrelay.errors import TimeoutError

T = TypeVar("T")

_log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TimeoutConfig:
    """Named deadlines per API, in seconds."""

    chat: float
    ai_builder: float
    enhancer: float
    integration: float
    default: float


TIMEOUT_CONFIG = TimeoutConfig(
    chat=settings.chat_timeout,
    ai_builder=settings.ai_builder_timeout,
    enhancer=settings.enhancer_timeout,
    integration=settings.integration_timeout,
    default=settings.default_timeout,
)


class HandleState(str, Enum):
    SCHEDULED = "scheduled"
    FIRED = "fired"
    CANCELLED = "cancelled"


class TimeoutHandle:
    """A single pending timer owned by a :class:`TimeoutRegistry`."""

    def __init__(self, registry: "TimeoutRegistry", key: str, callback: Callable[[], Any]) -> None:
        self.key = key
        self.state = HandleState.SCHEDULED
        self._registry = registry
        self._callback = callback
        self._timer: asyncio.TimerHandle | None = None

    def cancel(self) -> None:
        """Cancel this timer if it has not fired yet.  Safe to call repeatedly."""
        if self.state is not HandleState.SCHEDULED:
            return
        self.state = HandleState.CANCELLED
        if self._timer is not None:
            self._timer.cancel()
        self._registry._discard(self)

    def _fire(self) -> None:
        if self.state is not HandleState.SCHEDULED:
            return
        self.state = HandleState.FIRED
        self._registry._discard(self)
        result = self._callback()
        if inspect.isawaitable(result):
            self._registry._track(result)

    def __repr__(self) -> str:
        return f"TimeoutHandle(key={self.key!r}, state={self.state.value})"


class TimeoutRegistry:
    """Map from key to a pending, cancelable timer.

    Example::

        timeouts = TimeoutRegistry()
        timeouts.schedule("slow:req-1", lambda: log.warning("slow"), 5.0)
        ...
        timeouts.cancel("slow:req-1")
    """

    def __init__(self) -> None:
        self._handles: dict[str, TimeoutHandle] = {}
        # Tasks of async callbacks that are still running.
        self._tasks: set[asyncio.Future[Any]] = set()

    def schedule(self, key: str, callback: Callable[[], Any], delay: float) -> TimeoutHandle:
        """Run *callback* once after *delay* seconds, replacing any timer under *key*.

        The handle removes itself from the registry just before *callback*
        runs.  A callback returning an awaitable has it scheduled as a task.
        Must be called from a running event loop.
        """
        loop = asyncio.get_running_loop()
        self.cancel(key)

        handle = TimeoutHandle(self, key, callback)
        handle._timer = loop.call_later(max(delay, 0.0), handle._fire)
        self._handles[key] = handle
        return handle

    def cancel(self, key: str) -> None:
        """Cancel the live timer under *key*, if any.  Never raises."""
        handle = self._handles.get(key)
        if handle is not None:
            handle.cancel()

    def cancel_all(self) -> None:
        """Cancel every live timer and every async callback still running."""
        for handle in list(self._handles.values()):
            handle.cancel()
        self._handles.clear()
        for task in list(self._tasks):
            task.cancel()

    def pending(self) -> list[str]:
        return list(self._handles)

    def __contains__(self, key: object) -> bool:
        return key in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    def _discard(self, handle: TimeoutHandle) -> None:
        # Only the live handle for a key may remove the entry.
        if self._handles.get(handle.key) is handle:
            del self._handles[handle.key]

    def _track(self, awaitable: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        task.add_done_callback(self._callback_finished)

    def _callback_finished(self, task: "asyncio.Future[Any]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _log.warning(
                "timeout_callback_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )


def _log_detached_outcome(task: "asyncio.Future[Any]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        _log.warning(
            "detached_operation_failed",
            error_type=type(exc).__name__,
            error=str(exc),
        )


async def with_deadline(
    operation: Awaitable[T],
    timeout: float,
    message: str = "Request timeout",
    *,
    cancel_on_timeout: bool = False,
) -> T:
    """Race *operation* against a *timeout*-second deadline.

    If the operation settles first, its value is returned or its exception
    re-raised unchanged.  If the deadline passes first, :class:`TimeoutError`
    carrying *message* is raised.

    By default the losing operation is detached, not cancelled: it keeps
    running in the background and its eventual result is discarded (a
    failure is only logged).  Callers holding resources they need released
    should pass ``cancel_on_timeout=True``, which cancels the operation when
    the deadline wins.

    Raises:
        TimeoutError: The deadline elapsed before *operation* settled.
    """
    task = asyncio.ensure_future(operation)
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task in done:
        return task.result()

    if cancel_on_timeout:
        task.cancel()
    else:
        task.add_done_callback(_log_detached_outcome)

    _log.warning("deadline_exceeded", timeout_seconds=timeout, detached=not cancel_on_timeout)
    raise TimeoutError(message)
