"""Derived handles — values computed from other handles.

derive() builds a new Whispr from a dict of source handles and a combine
function. Every time any source changes, the combined value is recomputed
from the *current* value of every source and written into the derived
handle.

Ownership runs downstream-to-upstream: the derived handle keeps its sources
alive through the registry, so a chain of intermediate handles survives as
long as its last link is referenced. When the derived handle dies it
unsubscribes from its sources and releases them, which may in turn let the
sources die.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Mapping, TypeVar

from whispr import _anchor
from whispr.whispr import Whispr

if TYPE_CHECKING:
    from whispr._anchor import Registry

T = TypeVar("T")


def derive(
    inputs: Mapping[str, Whispr],
    combine: Callable[[dict], T],
    on_die: Callable[[], None] | None = None,
    *,
    registry: Registry | None = None,
) -> Whispr[T]:
    """Create a read-only handle computed from one or more source handles.

    combine receives a dict with the same keys as inputs, holding each
    source's current value (already cloned). An exception from combine
    here propagates; during later updates it is logged and the derived
    value keeps its last good state.

    Usage:
        price, set_price = create(10)
        qty, set_qty = create(3)
        total = derive({"price": price, "qty": qty}, lambda d: d["price"] * d["qty"])
        total.value  # 30
        set_qty(4)
        total.value  # 40
    """
    if registry is None:
        registry = _anchor.get_registry()
    sources = dict(inputs)

    def _compute() -> T:
        return combine({key: source.value for key, source in sources.items()})

    initial = _compute()

    key = registry.new_key()
    registry.hold(key, list(sources.values()))

    # Filled in below; read by the death callback.
    unsubscribers: list[Callable[[], None]] = []

    def _on_derived_die() -> None:
        for unsubscribe in unsubscribers:
            unsubscribe()
        unsubscribers.clear()
        registry.release(key)
        if on_die is not None:
            on_die()

    derived, set_derived = Whispr.create(initial, _on_derived_die, registry=registry)

    def _recompute(_value) -> None:
        # The return value is ignored: a dead derived handle is unsubscribed
        # by its death callback.
        set_derived(_compute())

    for source in sources.values():
        unsubscribers.append(source.subscribe(_recompute, False))

    return derived


def consolidate(
    inputs: Mapping[str, Whispr],
    on_die: Callable[[], None] | None = None,
    *,
    registry: Registry | None = None,
) -> Whispr[dict]:
    """Gather several handles into one handle holding a dict of their values.

    Shorthand for derive() with an identity combine.
    """
    return derive(inputs, lambda data: data, on_die, registry=registry)
