"""Type-tagged value containers shared by nodes.

``Context`` is the mutable store that flows through a whole run; ``Params``
is the immutable configuration bound to one node visit. Both box every value
in a ``DynamicValue`` that remembers the type it was stored as, so a typed
read under a different type raises ``TypeMismatch`` instead of coercing.
"""

import threading
import types
from collections.abc import Mapping, MutableMapping
from typing import Any, Dict, Iterator, Optional, Tuple, Union, get_args, get_origin

from .errors import TypeMismatch

_MISSING = object()

# ``int | None`` unions (Python 3.10+)
_UnionType = getattr(types, "UnionType", None)


def _options(expected: Any) -> Tuple[Any, ...]:
    """Flatten ``expected`` into plain classes.

    Tuples and ``Union``/``Optional`` (or ``X | Y``) expand to their members;
    parametrized generics such as ``List[int]`` reduce to their origin class,
    so only the container type is checked, not its elements.
    """
    if isinstance(expected, tuple):
        return tuple(opt for member in expected for opt in _options(member))
    if expected is Any or expected is None:
        return (object,) if expected is Any else (type(None),)
    origin = get_origin(expected)
    if origin is Union or (_UnionType is not None and origin is _UnionType):
        return _options(get_args(expected))
    if isinstance(origin, type):
        return (origin,)
    if isinstance(expected, type):
        return (expected,)
    raise TypeError(f"Expected a type, a tuple of types or a typing union, got {expected!r}")


def _matches(tag: type, expected: Any) -> bool:
    """Return True when a value tagged ``tag`` may be read as ``expected``."""
    for option in _options(expected):
        if option is object:
            return True
        # bool is an int subclass; never hand a flag out as a number
        if option is int and tag is bool:
            continue
        if issubclass(tag, option):
            return True
    return False


class DynamicValue:
    """A value boxed together with its type tag."""

    __slots__ = ("value", "type_tag")

    def __init__(self, value: Any, type_tag: Optional[type] = None):
        if type_tag is not None and not _matches(type(value), type_tag):
            raise TypeMismatch("<value>", type_tag, type(value))
        if not isinstance(type_tag, type):
            # unset, or a typing construct already checked above
            type_tag = type(value)
        self.value = value
        self.type_tag = type_tag

    def get(self, expected: Any = object, key: Any = "<value>") -> Any:
        if not _matches(self.type_tag, expected):
            raise TypeMismatch(key, expected, self.type_tag)
        return self.value

    def __eq__(self, other):
        if not isinstance(other, DynamicValue):
            return NotImplemented
        return self.type_tag is other.type_tag and self.value == other.value

    def __repr__(self):
        return f"DynamicValue({self.value!r}, {self.type_tag.__name__})"


def _check_key(key: Any) -> None:
    if not isinstance(key, str):
        raise TypeError(f"Keys must be str, got {type(key).__name__}")


class Context(MutableMapping):
    """Shared mutable state for one run.

    Plain item access reads and writes raw values; ``get_as`` and ``set``
    add the type check. Every operation holds ``lock``, which callers can
    also take for a compound read-modify-write from several threads.
    """

    def __init__(self, initial: Optional[Mapping] = None, **kwargs: Any):
        self._data: Dict[str, DynamicValue] = {}
        self.lock = threading.RLock()
        if initial:
            self.update(initial)
        if kwargs:
            self.update(kwargs)

    def __getitem__(self, key: str) -> Any:
        with self.lock:
            return self._data[key].value

    def __setitem__(self, key: str, value: Any) -> None:
        _check_key(key)
        with self.lock:
            self._data[key] = DynamicValue(value)

    def __delitem__(self, key: str) -> None:
        with self.lock:
            del self._data[key]

    def __iter__(self) -> Iterator[str]:
        with self.lock:
            return iter(list(self._data))

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def set(self, key: str, value: Any, type_: Optional[type] = None) -> None:
        """Store ``value`` under ``key``, optionally declaring its type."""
        _check_key(key)
        try:
            boxed = DynamicValue(value, type_)
        except TypeMismatch as exc:
            raise TypeMismatch(key, exc.expected, exc.actual) from None
        with self.lock:
            self._data[key] = boxed

    def get_as(self, key: str, type_: Any, default: Any = _MISSING) -> Any:
        """Read ``key`` as ``type_``; raises TypeMismatch on a different type."""
        with self.lock:
            boxed = self._data.get(key)
        if boxed is None:
            if default is _MISSING:
                raise KeyError(key)
            return default
        return boxed.get(type_, key)

    def type_of(self, key: str) -> type:
        with self.lock:
            return self._data[key].type_tag

    def snapshot(self) -> Dict[str, Any]:
        with self.lock:
            return {k: v.value for k, v in self._data.items()}

    def __repr__(self):
        return f"Context({self.snapshot()!r})"


class Params(Mapping):
    """Immutable per-node configuration."""

    def __init__(self, initial: Optional[Mapping] = None, **kwargs: Any):
        data: Dict[str, DynamicValue] = {}
        for source in (initial or {}, kwargs):
            for key, value in source.items():
                _check_key(key)
                data[key] = value if isinstance(value, DynamicValue) else DynamicValue(value)
        self._data = data

    def __getitem__(self, key: str) -> Any:
        return self._data[key].value

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __setitem__(self, key, value):
        raise TypeError("Params are immutable; use merged() to derive new params")

    def __delitem__(self, key):
        raise TypeError("Params are immutable; use merged() to derive new params")

    def get_as(self, key: str, type_: Any, default: Any = _MISSING) -> Any:
        boxed = self._data.get(key)
        if boxed is None:
            if default is _MISSING:
                raise KeyError(key)
            return default
        return boxed.get(type_, key)

    def merged(self, *overrides: Optional[Mapping]) -> "Params":
        """Return new params with each override applied on top, later wins."""
        data = dict(self._data)
        for override in overrides:
            if not override:
                continue
            if isinstance(override, Params):
                data.update(override._data)
            else:
                data.update(Params(override)._data)
        merged = Params()
        merged._data = data
        return merged

    def __eq__(self, other):
        if isinstance(other, Mapping):
            return dict(self.items()) == dict(other.items())
        return NotImplemented

    def __repr__(self):
        return f"Params({dict(self.items())!r})"
