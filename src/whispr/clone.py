"""Deep cloning for values stored in and read from an Observable.

safe_clone() produces a copy that shares no mutable substructure with its
input, so a reader mutating what it got back can never corrupt the stored
value. It never raises: anything it does not know how to copy is shared
by reference instead.

Opt-in and opt-out are explicit:
- an object with a callable clone() method is copied by calling it;
- an object with skip_safe_clone = True is shared silently;
- any other user-defined instance is shared with a warning.
"""

from __future__ import annotations

import collections
import datetime
import decimal
import enum
import fractions
import functools
import logging
import pathlib
import re
import types
import uuid

logger = logging.getLogger("whispr.clone")

# Attribute an object sets to True to be shared without a warning.
SKIP_SAFE_CLONE = "skip_safe_clone"

_IMMUTABLE = (
    type(None), bool, int, float, complex, str, bytes,
    type(Ellipsis), type(NotImplemented), range,
    decimal.Decimal, fractions.Fraction, uuid.UUID, pathlib.PurePath,
    datetime.date, datetime.time, datetime.timedelta, datetime.timezone,
    enum.Enum,
)

_FUNCTION_LIKE = (
    types.FunctionType, types.BuiltinFunctionType, types.MethodType,
    types.BuiltinMethodType, types.ModuleType, functools.partial,
    types.MethodWrapperType, types.WrapperDescriptorType, type,
)


def safe_clone(value):
    """Deeply clone value. See the module docstring for the rules."""
    return _clone(value, {})


def _clone(value, memo: dict[int, object]):
    if isinstance(value, _IMMUTABLE) or isinstance(value, _FUNCTION_LIKE):
        return value

    key = id(value)
    if key in memo:
        return memo[key]

    try:
        return _clone_structure(value, memo)
    except Exception:
        logger.warning(
            "Could not clone %s; sharing it by reference", type(value).__name__, exc_info=True,
        )
        memo[key] = value
        return value


def _clone_structure(value, memo: dict[int, object]):
    key = id(value)
    cls = type(value)

    # Containers register themselves in memo before recursing so cycles resolve.
    if cls is list:
        result = []
        memo[key] = result
        result.extend(_clone(item, memo) for item in value)
        return result

    if cls is dict or cls is collections.OrderedDict or cls is collections.Counter:
        result = cls()
        memo[key] = result
        for k, v in value.items():
            result[_clone(k, memo)] = _clone(v, memo)
        return result

    if cls is collections.defaultdict:
        result = collections.defaultdict(value.default_factory)
        memo[key] = result
        for k, v in value.items():
            result[_clone(k, memo)] = _clone(v, memo)
        return result

    if cls is collections.ChainMap:
        result = collections.ChainMap()
        memo[key] = result
        result.maps = [_clone(m, memo) for m in value.maps]
        return result

    if cls is collections.deque:
        result = collections.deque(maxlen=value.maxlen)
        memo[key] = result
        result.extend(_clone(item, memo) for item in value)
        return result

    if cls is set:
        result = set()
        memo[key] = result
        result.update(_clone(item, memo) for item in value)
        return result

    if cls is frozenset:
        return memo.setdefault(key, frozenset(_clone(item, memo) for item in value))

    if isinstance(value, tuple):
        items = [_clone(item, memo) for item in value]
        if cls is tuple:
            result = tuple(items)
        elif hasattr(value, "_fields"):
            result = cls(*items)  # namedtuple
        else:
            return _clone_instance(value, memo)
        return memo.setdefault(key, result)

    if isinstance(value, re.Pattern):
        return memo.setdefault(key, re.compile(value.pattern, value.flags))

    if cls is bytearray or cls is memoryview:
        return memo.setdefault(key, bytearray(value))

    if isinstance(value, BaseException):
        return memo.setdefault(key, _clone_exception(value))

    return _clone_instance(value, memo)


def _clone_instance(value, memo: dict[int, object]):
    key = id(value)

    clone = getattr(value, "clone", None)
    if callable(clone):
        return memo.setdefault(key, clone())

    if getattr(value, SKIP_SAFE_CLONE, False) is True:
        memo[key] = value
        return value

    if type(value) is types.SimpleNamespace:
        result = types.SimpleNamespace()
        memo[key] = result
        for name, field in vars(value).items():
            setattr(result, name, _clone(field, memo))
        return result

    logger.warning(
        "%s instance is not cloneable; it will be shared by reference. "
        "Define clone() or set %s = True to silence this.",
        type(value).__qualname__, SKIP_SAFE_CLONE,
    )
    memo[key] = value
    return value


def _clone_exception(value: BaseException) -> BaseException:
    try:
        result = type(value)(*value.args)
    except Exception:
        return value
    result.__traceback__ = value.__traceback__
    result.__cause__ = value.__cause__
    result.__context__ = value.__context__
    result.__suppress_context__ = value.__suppress_context__
    return result
