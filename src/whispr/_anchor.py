"""Liveness registry — tracks which handles are alive and what keeps them so.

A Registry holds two tables:
- finalizers: one weakref.finalize per live handle, running its death
  callback once the handle is unreachable (or when the registry closes);
- strong_refs: derivation key -> source handles. A derived handle keeps its
  sources alive through this table, so the upstream links of a chain live
  exactly as long as its terminal handle.

Invariant: a strong_refs entry exists iff its derived handle is alive.

A process default registry is used when none is passed explicitly.
"""

from __future__ import annotations

import itertools
import logging
import weakref
from typing import Callable

logger = logging.getLogger("whispr._anchor")


class Registry:
    """Owns the liveness state of a set of handles."""

    def __init__(self) -> None:
        self.finalizers: dict[int, weakref.finalize] = {}
        self.strong_refs: dict[int, list] = {}
        # itertools.count is atomic under the GIL
        self._ids = itertools.count(1)

    def new_key(self) -> int:
        return next(self._ids)

    def track(self, handle: object, on_die: Callable[[], None]) -> int:
        """Run on_die once handle becomes unreachable. Returns the handle's id."""
        handle_id = self.new_key()
        finalizer = weakref.finalize(handle, self._die, handle_id, on_die)
        # Collected handles must not block interpreter shutdown.
        finalizer.atexit = False
        self.finalizers[handle_id] = finalizer
        return handle_id

    def kill(self, handle_id: int) -> None:
        """Run a handle's death callback now. No-op if it already ran."""
        finalizer = self.finalizers.get(handle_id)
        if finalizer is not None:
            finalizer()

    def hold(self, key: int, sources: list) -> None:
        self.strong_refs[key] = sources

    def release(self, key: int) -> None:
        """Drop a derivation's strong references. Idempotent."""
        self.strong_refs.pop(key, None)

    def _die(self, handle_id: int, on_die: Callable[[], None]) -> None:
        self.finalizers.pop(handle_id, None)
        logger.debug("Handle %d died", handle_id)
        try:
            on_die()
        except Exception:
            logger.exception("on_die callback for handle %d raised", handle_id)

    def close(self) -> None:
        """Kill every handle still tracked, downstream first."""
        # Later handles are derived from earlier ones, so newest dies first.
        for handle_id in sorted(self.finalizers, reverse=True):
            self.kill(handle_id)
        self.strong_refs.clear()
        logger.debug("Registry closed")

    def __enter__(self) -> Registry:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __len__(self) -> int:
        return len(self.finalizers)

    def __repr__(self) -> str:
        return f"Registry(alive={len(self.finalizers)}, chains={len(self.strong_refs)})"


_default = Registry()


def get_registry() -> Registry:
    """The registry used when none is passed explicitly."""
    return _default


def set_registry(registry: Registry) -> Registry:
    """Replace the default registry. Returns the previous one.

    Call once from the application's setup code; handles already created
    stay tracked by the registry they were created with.
    """
    global _default
    previous, _default = _default, registry
    return previous
