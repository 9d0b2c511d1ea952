"""whispr: reactive value containers with clone isolation and automatic teardown."""

from importlib.metadata import version as _version

__version__ = _version("whispr")

from whispr._anchor import Registry, get_registry, set_registry
from whispr.clone import SKIP_SAFE_CLONE, safe_clone
from whispr.observable import STOP, Observable, get_pending_count
from whispr.whispr import Setter, Whispr, create
from whispr.computed import consolidate, derive
from whispr.store import WhisprMap, WhisprMapMutations

__all__ = [
    "Whispr",
    "Setter",
    "create",
    "derive",
    "consolidate",
    "WhisprMap",
    "WhisprMapMutations",
    "Observable",
    "STOP",
    "get_pending_count",
    "safe_clone",
    "SKIP_SAFE_CLONE",
    "Registry",
    "get_registry",
    "set_registry",
]
