"""Whispr — the public reactive handle.

A Whispr is a thin handle around one Observable. It is the unit whose
liveness is tracked: when nothing references it anymore, the registry runs
its death callback, which closes the cell and then calls the user's on_die.

Writes go through the Setter returned by create(). The Setter references
the handle weakly, so holding only the Setter does not keep it alive.
"""

from __future__ import annotations

import asyncio
import weakref
from typing import TYPE_CHECKING, Callable, Generic, Mapping, TypeVar

from whispr import _anchor
from whispr.observable import STOP, Listener, Observable, Unsubscribe

if TYPE_CHECKING:
    from whispr._anchor import Registry

T = TypeVar("T")
R = TypeVar("R")


def _noop() -> None:
    pass


class Setter(Generic[T]):
    """Write-only capability for one Whispr."""

    __slots__ = ("_ref",)

    def __init__(self, handle: Whispr[T]) -> None:
        self._ref = weakref.ref(handle)

    @property
    def alive(self) -> bool:
        handle = self._ref()
        return handle is not None and handle.alive

    def __call__(self, value: T) -> bool:
        """Write value. Returns False, doing nothing, if the handle is dead."""
        handle = self._ref()
        if handle is None:
            return False
        return handle._cell.set(value)

    def __repr__(self) -> str:
        return f"Setter({'alive' if self.alive else 'dead'})"


class Whispr(Generic[T]):
    """Reactive container: read it, subscribe to it, derive from it."""

    __slots__ = ("_id", "_cell", "__weakref__")

    # Handles embedded in values are shared as they are.
    skip_safe_clone = True

    def __init__(self, value: T) -> None:
        """Internal. Use Whispr.create() instead."""
        self._id = 0
        self._cell: Observable[T] = Observable(value)

    @classmethod
    def create(
        cls,
        value: T,
        on_die: Callable[[], None] | None = None,
        *,
        registry: Registry | None = None,
    ) -> tuple[Whispr[T], Setter[T]]:
        """Create a handle and its setter.

        A dead handle cannot be revived. on_die runs once the handle is no
        longer strongly referenced; it may be reached from more than one
        path, so keep it idempotent.

        Usage:
            count, set_count = Whispr.create(0)
            count.subscribe(print)   # prints 0
            set_count(5)             # prints 5
        """
        if registry is None:
            registry = _anchor.get_registry()
        handle = cls(value)
        cell = handle._cell
        on_die = on_die or _noop

        def _on_death() -> None:
            cell.close()
            on_die()

        handle._id = registry.track(handle, _on_death)
        return handle, Setter(handle)

    @classmethod
    def from_(
        cls,
        inputs: Mapping[str, Whispr],
        combine: Callable[[dict], R],
        on_die: Callable[[], None] | None = None,
        *,
        registry: Registry | None = None,
    ) -> Whispr[R]:
        """See whispr.computed.derive."""
        from whispr.computed import derive
        return derive(inputs, combine, on_die, registry=registry)

    @classmethod
    def consolidate(
        cls,
        inputs: Mapping[str, Whispr],
        on_die: Callable[[], None] | None = None,
        *,
        registry: Registry | None = None,
    ) -> Whispr[dict]:
        """See whispr.computed.consolidate."""
        from whispr.computed import consolidate
        return consolidate(inputs, on_die, registry=registry)

    @property
    def value(self) -> T:
        """A deep clone of the current value."""
        return self._cell.value

    @property
    def alive(self) -> bool:
        return not self._cell.closed

    def subscribe(self, listener: Listener, immediate: bool = True) -> Unsubscribe:
        """Call listener with every new value; returning STOP unsubscribes.

        With immediate=True the listener first receives the current value.
        The listener may be a coroutine function; it is not awaited by the
        writer. The same value may be delivered more than once.
        """
        return self._cell.subscribe(listener, immediate)

    async def wait(self, predicate: Callable[[T], R | None]) -> R:
        """Wait for the first value on which predicate returns something other than None.

        There is no timeout; wrap in asyncio.wait_for() if you need one.
        The handle stays alive while this is awaited.
        """
        future: asyncio.Future[R] = asyncio.get_running_loop().create_future()

        def _check(value: T):
            if future.done():
                return STOP
            result = predicate(value)
            if result is None:
                return None
            future.set_result(result)
            return STOP

        unsubscribe = self.subscribe(_check)
        try:
            return await future
        finally:
            unsubscribe()

    async def load(self) -> T:
        """Wait for the first value that is not None."""
        return await self.wait(lambda value: value)

    def transform(
        self, transformer: Callable[[T], R], *, registry: Registry | None = None
    ) -> Whispr[R]:
        """Shortcut for from_() when this handle is the only input."""
        return self.from_(
            {"self": self}, lambda data: transformer(data["self"]), registry=registry
        )

    def __repr__(self) -> str:
        state = repr(self._cell._value) if self.alive else "dead"
        return f"Whispr({state})"


create = Whispr.create
