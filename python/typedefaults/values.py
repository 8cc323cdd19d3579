"""
Dynamic values: a type, a payload and an optional set of marks.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Mapping
from typing import Any, Hashable

import numpy as np

from .types import (
    BOOL,
    DYNAMIC,
    NUMBER,
    STRING,
    ListType,
    MapType,
    SetType,
    Shape,
    TupleType,
    Type,
    friendly_name,
    is_namedtuple_type,
    object_type,
    shape_of,
)


class _Unknown:
    """Payload of a value whose content is not known yet."""

    _instance: _Unknown | None = None

    def __new__(cls) -> _Unknown:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNKNOWN"


UNKNOWN = _Unknown()


@dataclasses.dataclass(frozen=True)
class Value:
    """
    An immutable value of a given type.

    The payload is `None` for null values, `UNKNOWN` for unknown values,
    a `str` / `int` / `float` / `bool` for primitives, a tuple of values for
    lists, sets and tuples, and a tuple of `(name, value)` pairs sorted by
    name for objects and maps. Marks are opaque hashable tags carried by the
    value itself, not by its nested elements.
    """

    type: Type
    payload: Any
    marks: frozenset[Hashable] = frozenset()

    def __repr__(self) -> str:
        if self.payload is None:
            content = "null"
        elif self.payload is UNKNOWN:
            content = "unknown"
        elif self.shape in (Shape.OBJECT, Shape.MAP):
            content = "{" + ", ".join(f"{k}: {v!r}" for k, v in self.payload) + "}"
        elif self.shape in (Shape.LIST, Shape.SET, Shape.TUPLE):
            content = "[" + ", ".join(repr(v) for v in self.payload) + "]"
        else:
            content = repr(self.payload)
        if self.marks:
            content += " marked {" + ", ".join(sorted(map(repr, self.marks))) + "}"
        return f"Value({friendly_name(self.type)}, {content})"

    @property
    def shape(self) -> Shape:
        return shape_of(self.type)

    def is_known(self) -> bool:
        return self.payload is not UNKNOWN

    def is_null(self) -> bool:
        return self.payload is None

    def _require_content(self, shapes: tuple[Shape, ...]) -> Any:
        if self.marks:
            raise ValueError("Value is marked, unmark it first")
        if self.payload is None or self.payload is UNKNOWN:
            raise ValueError(f"Cannot inspect a null or unknown {friendly_name(self.type)}")
        if self.shape not in shapes:
            raise TypeError(f"Cannot inspect elements of a {friendly_name(self.type)}")
        return self.payload

    def as_value_slice(self) -> list[Value]:
        return list(self._require_content((Shape.LIST, Shape.SET, Shape.TUPLE)))

    def as_value_map(self) -> dict[str, Value]:
        return dict(self._require_content((Shape.OBJECT, Shape.MAP)))

    def length(self) -> int:
        return len(
            self._require_content(
                (Shape.LIST, Shape.SET, Shape.TUPLE, Shape.OBJECT, Shape.MAP)
            )
        )

    # Marks

    def mark(self, *marks: Hashable) -> Value:
        return self.with_marks(frozenset(marks))

    def with_marks(self, marks: Iterable[Hashable]) -> Value:
        marks = self.marks | frozenset(marks)
        if marks == self.marks:
            return self
        return dataclasses.replace(self, marks=marks)

    def unmark(self) -> tuple[Value, frozenset[Hashable]]:
        if not self.marks:
            return self, self.marks
        return dataclasses.replace(self, marks=frozenset()), self.marks

    def is_marked(self) -> bool:
        return bool(self.marks)

    def has_mark(self, mark: Hashable) -> bool:
        return mark in self.marks

    def to_python(self) -> Any:
        """
        Convert to plain Python data: lists for lists, sets and tuples, dicts
        for objects and maps. Marks are dropped.
        """
        if self.payload is UNKNOWN:
            raise ValueError("Unknown values have no Python representation")
        if self.payload is None:
            return None
        shape = self.shape
        if shape in (Shape.LIST, Shape.SET, Shape.TUPLE):
            return [v.to_python() for v in self.payload]
        if shape in (Shape.OBJECT, Shape.MAP):
            return {k: v.to_python() for k, v in self.payload}
        return self.payload


# ========================= Constructors =========================


def null_val(t: Type) -> Value:
    return Value(t, None)


def unknown_val(t: Type) -> Value:
    return Value(t, UNKNOWN)


def string_val(s: str) -> Value:
    if not isinstance(s, str):
        raise TypeError(f"string_val() expects a str, got {type(s)}")
    return Value(STRING, s)


def number_val(n: Any) -> Value:
    if isinstance(n, np.number):
        n = n.item()
    if isinstance(n, bool) or not isinstance(n, (int, float)):
        raise TypeError(f"number_val() expects an int or float, got {type(n)}")
    return Value(NUMBER, n)


def bool_val(b: Any) -> Value:
    if isinstance(b, np.bool_):
        b = bool(b)
    if not isinstance(b, bool):
        raise TypeError(f"bool_val() expects a bool, got {type(b)}")
    return Value(BOOL, b)


TRUE = bool_val(True)
FALSE = bool_val(False)


def _element_type(values: tuple[Value, ...], what: str) -> Type:
    element_type = values[0].type
    for v in values[1:]:
        if v.type != element_type:
            raise ValueError(
                f"Inconsistent {what} element types: "
                f"{friendly_name(element_type)} and {friendly_name(v.type)}"
            )
    return element_type


def list_val(values: Iterable[Value]) -> Value:
    elements = tuple(values)
    if not elements:
        raise ValueError("list_val() requires at least one element, use empty_list_val()")
    return Value(ListType(_element_type(elements, "list")), elements)


def empty_list_val(element_type: Type) -> Value:
    return Value(ListType(element_type), ())


def _set_order_key(v: Value) -> tuple[bool, str]:
    return (not v.is_known(), repr(v))


def set_val(values: Iterable[Value]) -> Value:
    elements = tuple(values)
    if not elements:
        raise ValueError("set_val() requires at least one element, use empty_set_val()")
    element_type = _element_type(elements, "set")
    unique = sorted(dict.fromkeys(elements), key=_set_order_key)
    return Value(SetType(element_type), tuple(unique))


def empty_set_val(element_type: Type) -> Value:
    return Value(SetType(element_type), ())


def tuple_val(values: Iterable[Value]) -> Value:
    elements = tuple(values)
    return Value(TupleType(tuple(v.type for v in elements)), elements)


def _sorted_items(values: Mapping[str, Value]) -> tuple[tuple[str, Value], ...]:
    for key in values:
        if not isinstance(key, str):
            raise TypeError(f"Attribute and map keys must be strings, got {key!r}")
    return tuple(sorted(values.items(), key=lambda item: item[0]))


def object_val(values: Mapping[str, Value]) -> Value:
    items = _sorted_items(values)
    return Value(object_type({k: v.type for k, v in items}), items)


def map_val(values: Mapping[str, Value]) -> Value:
    items = _sorted_items(values)
    if not items:
        raise ValueError("map_val() requires at least one element, use empty_map_val()")
    element_type = _element_type(tuple(v for _, v in items), "map")
    return Value(MapType(element_type), items)


def empty_map_val(element_type: Type) -> Value:
    return Value(MapType(element_type), ())


# ========================= Python bridge =========================


def _infer(obj: Any) -> Value:
    if isinstance(obj, Value):
        return obj
    if obj is None:
        return null_val(DYNAMIC)
    if isinstance(obj, (bool, np.bool_)):
        return bool_val(obj)
    if isinstance(obj, str):
        return string_val(obj)
    if isinstance(obj, (int, float, np.number)):
        return number_val(obj)
    if isinstance(obj, np.ndarray):
        return tuple_val(_infer(item) for item in obj.tolist())
    if is_namedtuple_type(type(obj)):
        return object_val({name: _infer(getattr(obj, name)) for name in obj._fields})
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return object_val(
            {f.name: _infer(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
        )
    if isinstance(obj, Mapping):
        return object_val({k: _infer(v) for k, v in obj.items()})
    if isinstance(obj, (set, frozenset)):
        if not obj:
            return empty_set_val(DYNAMIC)
        return set_val(_infer(item) for item in obj)
    if isinstance(obj, (list, tuple)):
        return tuple_val(_infer(item) for item in obj)
    raise TypeError(f"Unsupported Python value of type {type(obj)}")


def from_python(obj: Any, t: Type | None = None) -> Value:
    """
    Build a value from plain Python data.

    Without `t`, the type is inferred: sequences become tuples and mappings
    become objects. With `t`, the inferred value is converted exactly to it.
    """
    v = _infer(obj)
    if t is None:
        return v

    from .convert import convert

    return convert(v, t)
