"""
Static type model for values handled by typedefaults.
"""

import collections.abc
import dataclasses
import inspect
import types
import typing
from enum import Enum
from typing import Any, Literal, NamedTuple

import numpy as np


class Shape(Enum):
    SCALAR = "Scalar"
    LIST = "List"
    SET = "Set"
    TUPLE = "Tuple"
    OBJECT = "Object"
    MAP = "Map"


@dataclasses.dataclass(frozen=True)
class PrimitiveType:
    kind: Literal["String", "Number", "Bool"]


@dataclasses.dataclass(frozen=True)
class DynamicPseudoType:
    """
    Placeholder for "any type". Only null and unknown values carry it.
    """

    kind: Literal["Dynamic"] = "Dynamic"


@dataclasses.dataclass(frozen=True)
class ListType:
    element_type: "Type"
    kind: Literal["List"] = "List"


@dataclasses.dataclass(frozen=True)
class SetType:
    element_type: "Type"
    kind: Literal["Set"] = "Set"


@dataclasses.dataclass(frozen=True)
class MapType:
    element_type: "Type"
    kind: Literal["Map"] = "Map"


@dataclasses.dataclass(frozen=True)
class TupleType:
    element_types: tuple["Type", ...]
    kind: Literal["Tuple"] = "Tuple"

    def __post_init__(self) -> None:
        object.__setattr__(self, "element_types", tuple(self.element_types))


@dataclasses.dataclass(frozen=True)
class ObjectType:
    """
    Object type with named attributes. Attributes listed in `optional` may be
    absent in a value being converted to this type.
    """

    attributes: tuple[tuple[str, "Type"], ...]
    optional: frozenset[str] = frozenset()
    kind: Literal["Object"] = "Object"

    def __post_init__(self) -> None:
        attributes = self.attributes
        if isinstance(attributes, collections.abc.Mapping):
            attributes = attributes.items()
        object.__setattr__(self, "attributes", tuple(sorted(attributes)))
        object.__setattr__(self, "optional", frozenset(self.optional))
        unknown = self.optional.difference(self.attribute_types)
        if unknown:
            raise ValueError(
                f"Optional attributes {sorted(unknown)} are not declared on the object type"
            )

    @property
    def attribute_types(self) -> dict[str, "Type"]:
        return dict(self.attributes)

    def attribute_type(self, name: str) -> "Type":
        for attr_name, attr_type in self.attributes:
            if attr_name == name:
                return attr_type
        raise KeyError(name)

    def has_attribute(self, name: str) -> bool:
        return any(attr_name == name for attr_name, _ in self.attributes)

    def is_optional(self, name: str) -> bool:
        return name in self.optional


Type = (
    PrimitiveType
    | DynamicPseudoType
    | ListType
    | SetType
    | MapType
    | TupleType
    | ObjectType
)

STRING = PrimitiveType("String")
NUMBER = PrimitiveType("Number")
BOOL = PrimitiveType("Bool")
DYNAMIC = DynamicPseudoType()


def object_type(
    attributes: collections.abc.Mapping[str, Type],
    optional: collections.abc.Iterable[str] = (),
) -> ObjectType:
    return ObjectType(tuple(attributes.items()), frozenset(optional))


def shape_of(t: Type) -> Shape:
    if isinstance(t, (PrimitiveType, DynamicPseudoType)):
        return Shape.SCALAR
    if isinstance(t, ListType):
        return Shape.LIST
    if isinstance(t, SetType):
        return Shape.SET
    if isinstance(t, TupleType):
        return Shape.TUPLE
    if isinstance(t, ObjectType):
        return Shape.OBJECT
    if isinstance(t, MapType):
        return Shape.MAP
    raise TypeError(f"Unsupported type: {t!r}")


def friendly_name(t: Type) -> str:
    """
    Human readable name of a type, for error messages.
    """
    if isinstance(t, PrimitiveType):
        return t.kind.lower()
    if isinstance(t, DynamicPseudoType):
        return "any type"
    if isinstance(t, ListType):
        return f"list of {friendly_name(t.element_type)}"
    if isinstance(t, SetType):
        return f"set of {friendly_name(t.element_type)}"
    if isinstance(t, MapType):
        return f"map of {friendly_name(t.element_type)}"
    if isinstance(t, TupleType):
        return "tuple"
    if isinstance(t, ObjectType):
        return "object"
    raise TypeError(f"Unsupported type: {t!r}")


# ========================= Python annotations =========================


def is_numpy_number_type(t: Any) -> bool:
    return isinstance(t, type) and issubclass(t, (np.integer, np.floating))


def is_namedtuple_type(t: Any) -> bool:
    return isinstance(t, type) and issubclass(t, tuple) and hasattr(t, "_fields")


def is_struct_type(t: Any) -> bool:
    return isinstance(t, type) and (
        dataclasses.is_dataclass(t) or is_namedtuple_type(t)
    )


class _AnalyzedAnnotation(NamedTuple):
    type: Type
    nullable: bool


def _analyze(t: Any) -> _AnalyzedAnnotation:
    origin = typing.get_origin(t)
    if origin is typing.Annotated:
        return _analyze(typing.get_args(t)[0])

    base_type = origin if origin is not None else t
    type_args = typing.get_args(t)

    if base_type in (types.UnionType, typing.Union):
        non_none_types = [arg for arg in type_args if arg not in (None, types.NoneType)]
        if len(non_none_types) != 1:
            raise ValueError(f"Unsupported union annotation: {t}")
        return _AnalyzedAnnotation(_analyze(non_none_types[0]).type, True)

    if base_type is Any or base_type is inspect.Parameter.empty:
        return _AnalyzedAnnotation(DYNAMIC, False)
    if base_type is str:
        return _AnalyzedAnnotation(STRING, False)
    if base_type is bool or base_type is np.bool_:
        return _AnalyzedAnnotation(BOOL, False)
    if base_type in (int, float) or is_numpy_number_type(base_type):
        return _AnalyzedAnnotation(NUMBER, False)
    if is_struct_type(base_type):
        return _AnalyzedAnnotation(_analyze_struct(base_type), False)

    elem_type = _analyze(type_args[0]).type if type_args else DYNAMIC
    if base_type in (list, collections.abc.Sequence):
        return _AnalyzedAnnotation(ListType(elem_type), False)
    if base_type in (set, frozenset, collections.abc.Set):
        return _AnalyzedAnnotation(SetType(elem_type), False)
    if base_type in (dict, collections.abc.Mapping):
        if type_args and _analyze(type_args[0]).type not in (STRING, DYNAMIC):
            raise ValueError(f"Map keys must be strings, got {t}")
        value_type = _analyze(type_args[1]).type if len(type_args) > 1 else DYNAMIC
        return _AnalyzedAnnotation(MapType(value_type), False)
    if base_type is tuple:
        if len(type_args) == 2 and type_args[1] is Ellipsis:
            return _AnalyzedAnnotation(ListType(elem_type), False)
        return _AnalyzedAnnotation(
            TupleType(tuple(_analyze(arg).type for arg in type_args)), False
        )

    raise ValueError(f"Unsupported type annotation: {t}")


def _analyze_struct(struct_type: type) -> ObjectType:
    attributes: dict[str, Type] = {}
    optional: set[str] = set()

    def add_field(name: str, annotation: Any, has_default: bool) -> None:
        try:
            analyzed = _analyze(annotation)
        except ValueError as e:
            e.add_note(
                f"Failed to analyze annotation for field - "
                f"{struct_type.__name__}.{name}: {annotation}"
            )
            raise
        attributes[name] = analyzed.type
        if analyzed.nullable or has_default:
            optional.add(name)

    if dataclasses.is_dataclass(struct_type):
        hints = typing.get_type_hints(struct_type)
        for field in dataclasses.fields(struct_type):
            has_default = (
                field.default is not dataclasses.MISSING
                or field.default_factory is not dataclasses.MISSING
            )
            add_field(field.name, hints.get(field.name, Any), has_default)
    else:
        hints = typing.get_type_hints(struct_type)
        defaults = getattr(struct_type, "_field_defaults", {})
        for name in getattr(struct_type, "_fields", ()):
            add_field(name, hints.get(name, Any), name in defaults)

    return object_type(attributes, optional)


def analyze_type(t: Any) -> Type:
    """
    Derive a type from a Python type annotation.

    Optional fields of dataclasses and NamedTuples (annotated `T | None` or
    carrying a default) become optional attributes of the object type.
    """
    return _analyze(t).type
