"""Observable — the value cell behind every handle.

Stores a deep clone of its value and a list of subscriptions. set() stores a
fresh clone and notifies every subscription in order. Notification is
fire-and-forget: a listener that returns an awaitable is scheduled on the
running event loop and the writer moves on without waiting for it.

A listener returning STOP (directly or from its awaitable) is unsubscribed.
A listener that raises is logged and stays subscribed.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Generic, TypeVar

from whispr.clone import safe_clone

T = TypeVar("T")

logger = logging.getLogger("whispr.observable")

STOP = "STOP"

Listener = Callable[[T], Any]
Unsubscribe = Callable[[], None]

# In-flight listener tasks. The loop only keeps weak references to tasks.
_pending: set[asyncio.Task] = set()


def get_pending_count() -> int:
    """Number of listener tasks still running. Useful for testing."""
    return len(_pending)


def _is_stop(result: object) -> bool:
    return isinstance(result, str) and result == STOP


async def _settle(awaitable: Awaitable) -> object:
    return await awaitable


async def _drain(awaitable: Awaitable) -> object:
    """Await awaitable, then every task it started, transitively.

    asyncio.run() cancels whatever is still pending when it returns, so a
    temporary loop must not stop while nested listener tasks are running.
    """
    try:
        return await awaitable
    finally:
        current = asyncio.current_task()
        while True:
            others = asyncio.all_tasks() - {current}
            if not others:
                break
            await asyncio.gather(*others, return_exceptions=True)


class _Subscription:
    __slots__ = ("listener", "active")

    def __init__(self, listener: Listener) -> None:
        self.listener = listener
        self.active = True


class Observable(Generic[T]):
    """A value plus the listeners interested in it."""

    __slots__ = ("_value", "_subscriptions", "_closed")

    # Copies would lose their listeners; share the cell instead.
    skip_safe_clone = True

    def __init__(self, value: T) -> None:
        self._value = safe_clone(value)
        self._subscriptions: list[_Subscription] = []
        self._closed = False

    @property
    def value(self) -> T:
        """A clone of the current value."""
        return safe_clone(self._value)

    @property
    def closed(self) -> bool:
        return self._closed

    def set(self, value: T) -> bool:
        """Store a clone of value and notify listeners. False once closed."""
        if self._closed:
            return False
        self._value = safe_clone(value)
        for subscription in list(self._subscriptions):
            if subscription.active:
                self._notify(subscription)
        return True

    def subscribe(self, listener: Listener, immediate: bool = True) -> Unsubscribe:
        """Register listener. If immediate, notify it with the current value now.

        Returns a function that removes this subscription; calling it more
        than once is harmless.
        """
        if not callable(listener):
            raise TypeError(f"listener must be callable, got {type(listener).__name__}")
        if self._closed:
            return lambda: None

        subscription = _Subscription(listener)
        self._subscriptions.append(subscription)
        if immediate:
            self._notify(subscription)

        def _unsubscribe() -> None:
            self._remove(subscription)

        return _unsubscribe

    def close(self) -> None:
        """Drop every subscription and reject further writes."""
        self._closed = True
        for subscription in self._subscriptions:
            subscription.active = False
        self._subscriptions.clear()

    def _remove(self, subscription: _Subscription) -> None:
        if not subscription.active:
            return
        subscription.active = False
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass  # already dropped by close()

    def _notify(self, subscription: _Subscription) -> None:
        try:
            result = subscription.listener(safe_clone(self._value))
        except Exception:
            logger.exception("Listener %r raised", subscription.listener)
            return

        if inspect.isawaitable(result):
            self._schedule(subscription, result)
        elif _is_stop(result):
            self._remove(subscription)

    def _schedule(self, subscription: _Subscription, awaitable: Awaitable) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            # No loop to hand off to: finish the listener, and anything it
            # scheduled, before moving on.
            try:
                result = asyncio.run(_drain(awaitable))
            except Exception:
                logger.exception("Listener %r raised", subscription.listener)
                return
            if _is_stop(result):
                self._remove(subscription)
            return

        task = loop.create_task(_settle(awaitable))
        _pending.add(task)
        task.add_done_callback(lambda t: self._settled(subscription, t))

    def _settled(self, subscription: _Subscription, task: asyncio.Task) -> None:
        _pending.discard(task)
        if task.cancelled():
            logger.warning("Listener %r was cancelled before finishing", subscription.listener)
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Listener %r raised", subscription.listener,
                exc_info=(type(error), error, error.__traceback__),
            )
        elif _is_stop(task.result()):
            self._remove(subscription)

    def __repr__(self) -> str:
        state = "closed" if self._closed else f"{len(self._subscriptions)} listeners"
        return f"Observable({self._value!r}, {state})"
