"""WhisprMap — a keyed collection of handles, observed as one handle.

The map's value is a plain dict from key to each member's current value.
It refreshes whenever a member is added, replaced or removed, and whenever
any member's value changes.

Mutation goes through the WhisprMapMutations returned by create(), which
holds the map weakly in the same way a Setter holds its handle.
"""

from __future__ import annotations

import logging
import weakref
from typing import TYPE_CHECKING, Callable, Generic, Hashable, TypeVar

from whispr import _anchor
from whispr.observable import STOP, Listener, Unsubscribe
from whispr.whispr import Whispr

if TYPE_CHECKING:
    from whispr._anchor import Registry

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")
R = TypeVar("R")

logger = logging.getLogger("whispr.store")


class WhisprMap(Generic[K, V]):
    """Read-only reactive view over a dict of handles."""

    __slots__ = ("_members", "_set_members", "_mapped", "_set_mapped", "_unsubscribers", "__weakref__")

    skip_safe_clone = True

    def __init__(self, registry: Registry) -> None:
        """Internal. Use WhisprMap.create() instead."""
        self._members, self._set_members = Whispr.create({}, registry=registry)
        self._mapped, self._set_mapped = Whispr.create({}, registry=registry)
        self._unsubscribers: dict[K, Unsubscribe] = {}
        self._members.subscribe(self._weak_refresh(), False)

    @classmethod
    def create(
        cls,
        on_die: Callable[[], None] | None = None,
        *,
        registry: Registry | None = None,
    ) -> tuple[WhisprMap[K, V], WhisprMapMutations[K, V]]:
        """Create an empty map and the object used to mutate it.

        Usage:
            users, mutations = WhisprMap.create()
            alice, set_alice = create({"name": "Alice"})
            mutations.set("alice", alice)
            users.value  # {"alice": {"name": "Alice"}}
        """
        if registry is None:
            registry = _anchor.get_registry()
        whispr_map = cls(registry)
        unsubscribers = whispr_map._unsubscribers

        def _on_death() -> None:
            for unsubscribe in unsubscribers.values():
                unsubscribe()
            unsubscribers.clear()
            if on_die is not None:
                on_die()

        registry.track(whispr_map, _on_death)
        return whispr_map, WhisprMapMutations(whispr_map)

    # --- Handle surface (delegated to the mapped handle) ---

    @property
    def value(self) -> dict[K, V]:
        return self._mapped.value

    @property
    def alive(self) -> bool:
        return self._mapped.alive

    def subscribe(self, listener: Listener, immediate: bool = True) -> Unsubscribe:
        return self._mapped.subscribe(listener, immediate)

    async def wait(self, predicate: Callable[[dict[K, V]], R | None]) -> R:
        return await self._mapped.wait(predicate)

    async def load(self) -> dict[K, V]:
        return await self._mapped.load()

    def transform(
        self, transformer: Callable[[dict[K, V]], R], *, registry: Registry | None = None
    ) -> Whispr[R]:
        return Whispr.from_(
            {"self": self}, lambda data: transformer(data["self"]), registry=registry
        )

    # --- Membership ---

    def __contains__(self, key: K) -> bool:
        return key in self._members.value

    def __len__(self) -> int:
        return len(self._members.value)

    def _set(self, key: K, member: Whispr[V], force: bool) -> None:
        members = self._members.value
        if key in members and not force:
            raise KeyError(f"Key {key!r} already exists in the WhisprMap")

        self._drop_subscription(key)
        members[key] = member
        self._set_members(members)
        self._unsubscribers[key] = member.subscribe(self._weak_refresh(), False)

    def _delete(self, key: K) -> None:
        members = self._members.value
        if key not in members:
            return
        del members[key]
        self._drop_subscription(key)
        self._set_members(members)

    def _drop_subscription(self, key: K) -> None:
        unsubscribe = self._unsubscribers.pop(key, None)
        if unsubscribe is not None:
            unsubscribe()

    def _weak_refresh(self) -> Listener:
        """A listener that refreshes this map without keeping it alive."""
        ref = weakref.ref(self)

        def _listener(_value):
            whispr_map = ref()
            if whispr_map is None:
                return STOP
            whispr_map._refresh()
            return None

        return _listener

    def _refresh(self) -> None:
        mapped = {key: member.value for key, member in self._members.value.items()}
        self._set_mapped(mapped)

    def __repr__(self) -> str:
        return f"WhisprMap({self._mapped.value!r})"


class WhisprMapMutations(Generic[K, V]):
    """Write capability for one WhisprMap. Holds the map weakly."""

    __slots__ = ("_ref",)

    def __init__(self, whispr_map: WhisprMap[K, V]) -> None:
        self._ref = weakref.ref(whispr_map)

    def set(self, key: K, member: Whispr[V], force: bool = False) -> bool:
        """Add member under key. Raises KeyError if key exists and force is False.

        Returns False, doing nothing, if the map is gone.
        """
        whispr_map = self._ref()
        if whispr_map is None or not whispr_map.alive:
            return False
        whispr_map._set(key, member, force)
        return True

    def delete(self, key: K) -> bool:
        """Remove key. A missing key is ignored.

        Returns False, doing nothing, if the map is gone.
        """
        whispr_map = self._ref()
        if whispr_map is None or not whispr_map.alive:
            return False
        whispr_map._delete(key)
        logger.debug("Deleted %r from %r", key, whispr_map)
        return True
