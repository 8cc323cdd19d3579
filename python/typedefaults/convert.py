"""
Conversion between value types, and unification of several types into one.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any, Callable

from .errors import ConversionError
from .types import (
    DYNAMIC,
    STRING,
    DynamicPseudoType,
    ListType,
    MapType,
    ObjectType,
    PrimitiveType,
    SetType,
    TupleType,
    Type,
    friendly_name,
    object_type,
)
from .values import (
    Value,
    bool_val,
    empty_list_val,
    empty_map_val,
    empty_set_val,
    list_val,
    map_val,
    null_val,
    number_val,
    object_val,
    set_val,
    string_val,
    tuple_val,
    unknown_val,
)

Conversion = Callable[[Value], Value]

# Takes the value to convert and the path leading to it, for error messages.
_PathConversion = Callable[[Value, list[str]], Value]


class ChildFieldPath:
    """Context manager to append a field to field_path on enter and pop it on exit."""

    _field_path: list[str]
    _field_name: str

    def __init__(self, field_path: list[str], field_name: str):
        self._field_path: list[str] = field_path
        self._field_name = field_name

    def __enter__(self) -> ChildFieldPath:
        self._field_path.append(self._field_name)
        return self

    def __exit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        self._field_path.pop()


def _identity(value: Value, _field_path: list[str]) -> Value:
    return value


def _with_null_handling(conv: _PathConversion, out_type: Type) -> _PathConversion:
    """
    Wrap a conversion of known, non-null, unmarked values so that it accepts
    any value of the input type.
    """

    def convert_value(value: Value, field_path: list[str]) -> Value:
        bare, marks = value.unmark()
        if not bare.is_known():
            return unknown_val(out_type).with_marks(marks)
        if bare.is_null():
            return null_val(out_type).with_marks(marks)
        return conv(bare, field_path).with_marks(marks)

    return convert_value


# ========================= Primitives =========================


def _format_number(n: int | float) -> str:
    if isinstance(n, float) and n.is_integer():
        return str(int(n))
    return str(n)


def _parse_number(s: str, field_path: list[str]) -> Value:
    try:
        return number_val(int(s))
    except ValueError:
        pass
    try:
        n = float(s)
    except ValueError:
        raise ConversionError("a number is required", field_path) from None
    if not math.isfinite(n):
        raise ConversionError("a finite number is required", field_path)
    return number_val(n)


def _parse_bool(s: str, field_path: list[str]) -> Value:
    if s == "true":
        return bool_val(True)
    if s == "false":
        return bool_val(False)
    raise ConversionError("a bool is required", field_path)


def _primitive_conversion(
    in_type: PrimitiveType, out_type: PrimitiveType
) -> _PathConversion | None:
    if out_type.kind == "String":
        if in_type.kind == "Number":
            return lambda v, _: string_val(_format_number(v.payload))
        if in_type.kind == "Bool":
            return lambda v, _: string_val("true" if v.payload else "false")
    elif in_type.kind == "String":
        if out_type.kind == "Number":
            return lambda v, path: _parse_number(v.payload, path)
        if out_type.kind == "Bool":
            return lambda v, path: _parse_bool(v.payload, path)
    return None


# ========================= Collections =========================


def _unified_element_type(element_types: Sequence[Type], unsafe: bool) -> Type | None:
    if not element_types:
        return DYNAMIC
    unified, _ = unify(element_types, unsafe=unsafe)
    return unified


def _to_sequence_conversion(
    in_type: Type, out_type: ListType | SetType, unsafe: bool
) -> _PathConversion | None:
    out_elem = out_type.element_type
    is_set = isinstance(out_type, SetType)

    if isinstance(in_type, TupleType):
        if out_elem == DYNAMIC:
            unified = _unified_element_type(in_type.element_types, unsafe)
            if unified is None:
                return None
            out_elem = unified
        elem_convs = [
            _get_conversion(t, out_elem, unsafe) for t in in_type.element_types
        ]
        if any(conv is None for conv in elem_convs):
            return None
    elif isinstance(in_type, (ListType, SetType)):
        elem_conv = _get_conversion(in_type.element_type, out_elem, unsafe)
        if elem_conv is None:
            return None
        if out_elem == DYNAMIC:
            out_elem = in_type.element_type
        elem_convs = None
    else:
        return None

    def convert_sequence(value: Value, field_path: list[str]) -> Value:
        converted = []
        for i, element in enumerate(value.as_value_slice()):
            conv = elem_conv if elem_convs is None else elem_convs[i]
            assert conv is not None
            with ChildFieldPath(field_path, f"[{i}]"):
                converted.append(conv(element, field_path))
        if not converted:
            return empty_set_val(out_elem) if is_set else empty_list_val(out_elem)
        return set_val(converted) if is_set else list_val(converted)

    return _with_null_handling(convert_sequence, out_type)


def _to_map_conversion(
    in_type: Type, out_type: MapType, unsafe: bool
) -> _PathConversion | None:
    out_elem = out_type.element_type

    if isinstance(in_type, ObjectType):
        if out_elem == DYNAMIC:
            unified = _unified_element_type(
                [t for _, t in in_type.attributes], unsafe
            )
            if unified is None:
                return None
            out_elem = unified
        attr_convs = {
            name: _get_conversion(t, out_elem, unsafe)
            for name, t in in_type.attributes
        }
        if any(conv is None for conv in attr_convs.values()):
            return None

        def get_conv(key: str) -> _PathConversion | None:
            return attr_convs[key]

    elif isinstance(in_type, MapType):
        elem_conv = _get_conversion(in_type.element_type, out_elem, unsafe)
        if elem_conv is None:
            return None
        if out_elem == DYNAMIC:
            out_elem = in_type.element_type

        def get_conv(key: str) -> _PathConversion | None:
            return elem_conv

    else:
        return None

    def convert_map(value: Value, field_path: list[str]) -> Value:
        converted = {}
        for key, element in value.as_value_map().items():
            conv = get_conv(key)
            assert conv is not None
            with ChildFieldPath(field_path, f"[{key!r}]"):
                converted[key] = conv(element, field_path)
        if not converted:
            return empty_map_val(out_elem)
        return map_val(converted)

    return _with_null_handling(convert_map, out_type)


def _to_tuple_conversion(
    in_type: Type, out_type: TupleType, unsafe: bool
) -> _PathConversion | None:
    out_elems = out_type.element_types

    if isinstance(in_type, TupleType):
        if len(in_type.element_types) != len(out_elems):
            return None
        elem_convs = [
            _get_conversion(src, dst, unsafe)
            for src, dst in zip(in_type.element_types, out_elems)
        ]
    elif isinstance(in_type, ListType) and unsafe:
        elem_convs = [
            _get_conversion(in_type.element_type, dst, unsafe) for dst in out_elems
        ]
    else:
        return None
    if any(conv is None for conv in elem_convs):
        return None

    def convert_tuple(value: Value, field_path: list[str]) -> Value:
        elements = value.as_value_slice()
        if len(elements) != len(out_elems):
            raise ConversionError(
                f"a tuple of {len(out_elems)} elements is required", field_path
            )
        converted = []
        for i, (element, conv) in enumerate(zip(elements, elem_convs)):
            assert conv is not None
            with ChildFieldPath(field_path, f"[{i}]"):
                converted.append(conv(element, field_path))
        return tuple_val(converted)

    return _with_null_handling(convert_tuple, out_type)


def _to_object_conversion(
    in_type: Type, out_type: ObjectType, unsafe: bool
) -> _PathConversion | None:
    attr_convs: dict[str, _PathConversion | None] = {}

    if isinstance(in_type, ObjectType):
        # Only unsafe conversions may drop attributes.
        if not unsafe and any(
            not out_type.has_attribute(name) for name, _ in in_type.attributes
        ):
            return None
        for name, out_attr in out_type.attributes:
            if in_type.has_attribute(name):
                conv = _get_conversion(in_type.attribute_type(name), out_attr, unsafe)
                if conv is None:
                    return None
                attr_convs[name] = conv
            elif not out_type.is_optional(name):
                return None
    elif isinstance(in_type, MapType) and unsafe:
        for name, out_attr in out_type.attributes:
            conv = _get_conversion(in_type.element_type, out_attr, unsafe)
            if conv is None:
                return None
            attr_convs[name] = conv
    else:
        return None

    def convert_object(value: Value, field_path: list[str]) -> Value:
        elements = value.as_value_map()
        converted = {}
        for name, out_attr in out_type.attributes:
            with ChildFieldPath(field_path, f".{name}"):
                conv = attr_convs.get(name)
                if name in elements and conv is not None:
                    converted[name] = conv(elements[name], field_path)
                elif out_type.is_optional(name):
                    converted[name] = null_val(out_attr)
                else:
                    raise ConversionError(
                        f'attribute "{name}" is required', field_path[:-1]
                    )
        result = object_val(converted)
        # The result keeps the optional attributes of the declared type.
        result_type = ObjectType(result.type.attributes, out_type.optional)
        return Value(result_type, result.payload)

    return _with_null_handling(convert_object, out_type)


def _get_conversion(
    in_type: Type, out_type: Type, unsafe: bool
) -> _PathConversion | None:
    if in_type == out_type or out_type == DYNAMIC:
        return _identity

    if isinstance(in_type, DynamicPseudoType):

        def convert_dynamic(value: Value, field_path: list[str]) -> Value:
            raise ConversionError(
                f"{friendly_name(out_type)} required", field_path
            )

        return _with_null_handling(convert_dynamic, out_type)

    if isinstance(out_type, PrimitiveType):
        if not unsafe or not isinstance(in_type, PrimitiveType):
            return None
        conv = _primitive_conversion(in_type, out_type)
        return None if conv is None else _with_null_handling(conv, out_type)
    if isinstance(out_type, (ListType, SetType)):
        return _to_sequence_conversion(in_type, out_type, unsafe)
    if isinstance(out_type, MapType):
        return _to_map_conversion(in_type, out_type, unsafe)
    if isinstance(out_type, TupleType):
        return _to_tuple_conversion(in_type, out_type, unsafe)
    if isinstance(out_type, ObjectType):
        return _to_object_conversion(in_type, out_type, unsafe)
    raise TypeError(f"Unsupported type: {out_type!r}")


def get_conversion(
    in_type: Type, out_type: Type, unsafe: bool = False
) -> Conversion | None:
    """
    Get a function converting values of `in_type` to `out_type`, or None if no
    such conversion exists. Safe conversions never fail; unsafe ones (e.g.
    string to number) may raise `ConversionError` depending on the value.
    """
    conv = _get_conversion(in_type, out_type, unsafe)
    if conv is None:
        return None
    path_conv = conv

    def convert_value(value: Value) -> Value:
        return path_conv(value, [])

    return convert_value


def convert(value: Value, target: Type) -> Value:
    """
    Convert a value to exactly the given type, raising `ConversionError` if
    the value cannot be represented in it.
    """
    conv = _get_conversion(value.type, target, unsafe=True)
    if conv is None:
        raise ConversionError(mismatch_message(value.type, target))
    return conv(value, [])


# ========================= Unification =========================


def _unify_same_kind(types: list[Type], unsafe: bool) -> Type | None:
    first = types[0]

    if isinstance(first, ObjectType):
        objects: list[ObjectType] = types  # type: ignore[assignment]
        names = [name for name, _ in first.attributes]
        if all([n for n, _ in o.attributes] == names for o in objects):
            attributes = {}
            for name in names:
                unified = _unify_types([o.attribute_type(name) for o in objects], unsafe)
                if unified is None:
                    return None
                attributes[name] = unified
            return object_type(attributes)
        unified = _unify_types(
            [t for o in objects for _, t in o.attributes] or [DYNAMIC], unsafe
        )
        return None if unified is None else MapType(unified)

    if isinstance(first, TupleType):
        tuples: list[TupleType] = types  # type: ignore[assignment]
        length = len(first.element_types)
        if all(len(t.element_types) == length for t in tuples):
            elements = []
            for i in range(length):
                unified = _unify_types([t.element_types[i] for t in tuples], unsafe)
                if unified is None:
                    return None
                elements.append(unified)
            return TupleType(tuple(elements))
        unified = _unify_types(
            [e for t in tuples for e in t.element_types] or [DYNAMIC], unsafe
        )
        return None if unified is None else ListType(unified)

    if isinstance(first, (ListType, SetType, MapType)):
        unified = _unify_types([t.element_type for t in types], unsafe)  # type: ignore[union-attr]
        return None if unified is None else type(first)(unified)

    return None


def _unify_types(types: Sequence[Type], unsafe: bool) -> Type | None:
    distinct = list(dict.fromkeys(types))
    concrete = [t for t in distinct if t != DYNAMIC]
    if not concrete:
        return DYNAMIC
    if len(concrete) == 1:
        return concrete[0]

    if all(type(t) is type(concrete[0]) for t in concrete):
        unified = _unify_same_kind(concrete, unsafe)
        # Objects and tuples unify structurally or not at all.
        if unified is not None or isinstance(concrete[0], (ObjectType, TupleType)):
            return unified

    # Strings are the most general primitive, so try them first.
    candidates = sorted(concrete, key=lambda t: t != STRING)
    for candidate in candidates:
        if all(_get_conversion(t, candidate, unsafe) is not None for t in concrete):
            return candidate
    return None


def unify(
    types: Sequence[Type], unsafe: bool = False
) -> tuple[Type | None, list[Conversion | None]]:
    """
    Find the most specific type all the given types can be converted to.

    Returns the unified type and, for each input type, the conversion to
    apply (None when the input already has the unified type). Returns
    `(None, [])` when there's no such type.
    """
    if not types:
        return None, []

    unified = _unify_types(types, unsafe)
    if unified is None:
        return None, []

    conversions: list[Conversion | None] = []
    for t in types:
        if t == unified:
            conversions.append(None)
            continue
        conv = get_conversion(t, unified, unsafe)
        if conv is None:
            return None, []
        conversions.append(conv)
    return unified, conversions


# ========================= Messages =========================


def mismatch_message(got: Type, want: Type) -> str:
    """
    Describe why a value of type `got` doesn't fit type `want`.
    """
    if isinstance(got, ObjectType) and isinstance(want, ObjectType):
        for name, _ in want.attributes:
            if not got.has_attribute(name) and not want.is_optional(name):
                return f'attribute "{name}" is required'
        differing = [
            (name, got.attribute_type(name), want_attr)
            for name, want_attr in want.attributes
            if got.has_attribute(name) and got.attribute_type(name) != want_attr
        ]
        # Prefer attributes that can't be converted at all.
        differing.sort(key=lambda d: _get_conversion(d[1], d[2], True) is not None)
        for name, got_attr, want_attr in differing:
            if want_attr != DYNAMIC:
                return f'attribute "{name}": {mismatch_message(got_attr, want_attr)}'
        return "object required"

    if isinstance(got, TupleType) and isinstance(want, TupleType):
        if len(got.element_types) != len(want.element_types):
            return f"a tuple of {len(want.element_types)} elements is required"
        for i, (got_elem, want_elem) in enumerate(
            zip(got.element_types, want.element_types)
        ):
            if got_elem != want_elem and want_elem != DYNAMIC:
                return f"element {i}: {mismatch_message(got_elem, want_elem)}"
        return "tuple required"

    if isinstance(got, TupleType) and isinstance(want, (ListType, SetType)):
        message = _element_mismatch(
            [(f"element {i}", t) for i, t in enumerate(got.element_types)],
            want.element_type,
        )
        if message is not None:
            return message

    if isinstance(got, ObjectType) and isinstance(want, MapType):
        message = _element_mismatch(
            [(f'element "{name}"', t) for name, t in got.attributes],
            want.element_type,
        )
        if message is not None:
            return message

    if type(got) is type(want) and isinstance(got, (ListType, SetType, MapType)):
        return (
            f"incorrect {got.kind.lower()} element type: "
            f"{mismatch_message(got.element_type, want.element_type)}"  # type: ignore[union-attr]
        )

    return f"{friendly_name(want)} required"


def _element_mismatch(elements: list[tuple[str, Type]], want: Type) -> str | None:
    if want == DYNAMIC:
        return None
    differing = [(label, t) for label, t in elements if t != want]
    # Prefer elements that can't be converted at all.
    differing.sort(key=lambda d: _get_conversion(d[1], want, True) is not None)
    if not differing:
        return None
    label, t = differing[0]
    return f"{label}: {mismatch_message(t, want)}"
