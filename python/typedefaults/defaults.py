"""
Apply default values to optional object attributes, at any nesting depth.

A `Defaults` tree mirrors the shape of a type. Each node carries the default
values for the attributes of the object at that level, and child nodes for
the elements, tuple positions or attributes that need nested defaults.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping
from types import MappingProxyType

from rich.text import Text
from rich.tree import Tree

from . import lib
from .convert import convert, mismatch_message, unify
from .errors import (
    ConversionError,
    InvariantViolation,
    MismatchError,
    NestingDepthError,
)
from .types import (
    MapType,
    ObjectType,
    SetType,
    Shape,
    TupleType,
    Type,
    friendly_name,
    shape_of,
)
from .values import (
    Value,
    empty_list_val,
    empty_map_val,
    empty_set_val,
    list_val,
    map_val,
    object_val,
    set_val,
    tuple_val,
)

_logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class Index:
    """Child key of a tuple element."""

    position: int


@dataclasses.dataclass(frozen=True)
class Attribute:
    """Child key of an object attribute."""

    name: str


@dataclasses.dataclass(frozen=True)
class Element:
    """Child key shared by all elements of a list, set or map."""


ELEMENT = Element()

ChildKey = Index | Attribute | Element


def _key_label(key: ChildKey) -> str:
    if isinstance(key, Index):
        return f"[{key.position}]"
    if isinstance(key, Attribute):
        return f".{key.name}"
    return "[*]"


@dataclasses.dataclass(frozen=True)
class Defaults:
    """
    Defaults for values of `type`.

    `default_values` maps attribute names to the value used when the
    attribute is missing or null. `children` holds the nested defaults:
    a single `ELEMENT` entry for lists, sets and maps, an `Index` entry per
    tuple position and an `Attribute` entry per object attribute.

    The tree is read-only once built and can be shared freely.
    """

    type: Type
    default_values: Mapping[str, Value] = dataclasses.field(default_factory=dict)
    children: Mapping[ChildKey, Defaults] = dataclasses.field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "default_values", MappingProxyType(dict(self.default_values))
        )
        object.__setattr__(self, "children", MappingProxyType(dict(self.children)))

    @property
    def is_empty(self) -> bool:
        return not self.default_values and not self.children

    def child(self, key: int | str) -> Defaults | None:
        """
        Get the nested defaults for the element at `key`: a position for
        sequences, an attribute name or map key for keyed values.
        """
        shape = shape_of(self.type)
        if shape in (Shape.LIST, Shape.SET, Shape.MAP):
            return self.children.get(ELEMENT)
        if shape is Shape.TUPLE:
            return self.children.get(Index(key)) if isinstance(key, int) else None
        if shape is Shape.OBJECT:
            return self.children.get(Attribute(key)) if isinstance(key, str) else None
        return None

    def apply(self, value: Value) -> Value:
        """
        Fill in missing and null optional attributes of `value`.

        The result may have a different type than `value`. Convert the value to
        the declared type first, or use `apply_and_convert()`, to avoid this.
        """
        try:
            return self._apply(value, False, 0, lib.get_settings().max_depth)
        except (ConversionError, MismatchError) as e:
            raise InvariantViolation(
                f"Defaults for {friendly_name(self.type)} disagree with the "
                f"types of their own default values: {e}"
            ) from e

    def apply_and_convert(self, value: Value) -> Value:
        """
        Fill in missing and null optional attributes of `value`, and convert
        the result to the declared type.

        Raises `MismatchError` if the result doesn't conform to the declared type.
        """
        return self._apply(value, True, 0, lib.get_settings().max_depth)

    def _apply(self, value: Value, exact: bool, depth: int, max_depth: int) -> Value:
        # Null containers stay null, only attributes inside them get defaults.
        if not value.is_known() or value.is_null():
            return value

        if self.is_empty:
            return value

        if depth >= max_depth:
            raise NestingDepthError(
                f"Defaults nested deeper than the maximum depth of {max_depth}"
            )

        value, marks = value.unmark()

        shape = value.shape
        if shape in (Shape.LIST, Shape.SET, Shape.TUPLE):
            elements = self._apply_as_slice(value, exact, depth, max_depth)
            if exact:
                result = self._convert_exact(tuple_val(elements))
            else:
                result = self._unify_from_slice(value.type, elements)
        elif shape in (Shape.OBJECT, Shape.MAP):
            attributes = self._apply_as_map(value, exact, depth, max_depth)
            for name in sorted(self.default_values):
                current = attributes.get(name)
                if current is not None and not current.is_null():
                    continue
                default_value = self.default_values[name]
                defaults = self.children.get(Attribute(name))
                if defaults is not None:
                    default_value = defaults._apply(
                        default_value, exact, depth + 1, max_depth
                    )
                attributes[name] = default_value
            if exact:
                result = self._convert_exact(object_val(attributes))
            else:
                result = self._unify_from_map(value.type, attributes)
        elif shape is Shape.SCALAR:
            result = value
        else:
            raise TypeError(f"Unsupported value shape: {shape}")

        return result.with_marks(marks)

    def _apply_as_slice(
        self, value: Value, exact: bool, depth: int, max_depth: int
    ) -> list[Value]:
        elements = []
        for i, element in enumerate(value.as_value_slice()):
            defaults = self.child(i)
            if defaults is not None:
                element = defaults._apply(element, exact, depth + 1, max_depth)
            elements.append(element)
        return elements

    def _apply_as_map(
        self, value: Value, exact: bool, depth: int, max_depth: int
    ) -> dict[str, Value]:
        attributes = {}
        for key, element in value.as_value_map().items():
            defaults = self.child(key)
            if defaults is not None:
                element = defaults._apply(element, exact, depth + 1, max_depth)
            attributes[key] = element
        return attributes

    def _convert_exact(self, assembled: Value) -> Value:
        try:
            return convert(assembled, self.type)
        except ConversionError as e:
            raise MismatchError(
                mismatch_message(assembled.type, self.type), assembled.type, self.type
            ) from e

    def _unify_from_slice(self, target: Type, elements: list[Value]) -> Value:
        if isinstance(target, TupleType):
            return tuple_val(elements)

        is_set = isinstance(target, SetType)
        if not elements:
            element_type = target.element_type  # type: ignore[union-attr]
            return empty_set_val(element_type) if is_set else empty_list_val(element_type)

        unified, conversions = unify([e.type for e in elements])
        if unified is None:
            _logger.debug(
                "No common type for elements of %s, keeping a tuple",
                friendly_name(target),
            )
            return tuple_val(elements)

        converted = []
        for element, conversion in zip(elements, conversions):
            if conversion is None:
                converted.append(element)
                continue
            try:
                converted.append(conversion(element))
            except ConversionError as e:
                _logger.debug(
                    "Converting element to %s failed, keeping a tuple: %s",
                    friendly_name(unified),
                    e,
                )
                return tuple_val(elements)

        return set_val(converted) if is_set else list_val(converted)

    def _unify_from_map(self, target: Type, attributes: dict[str, Value]) -> Value:
        if isinstance(target, ObjectType):
            return object_val(attributes)

        # Sorted so the outcome doesn't depend on the order of the input.
        keys = sorted(attributes)
        if not keys and isinstance(target, MapType):
            return empty_map_val(target.element_type)

        unified, conversions = unify([attributes[key].type for key in keys])
        if unified is None:
            _logger.debug(
                "No common type for elements of %s, keeping an object",
                friendly_name(target),
            )
            return object_val(attributes)

        converted = {}
        for key, conversion in zip(keys, conversions):
            if conversion is None:
                converted[key] = attributes[key]
                continue
            try:
                converted[key] = conversion(attributes[key])
            except ConversionError as e:
                _logger.debug(
                    "Converting element %r to %s failed, keeping an object: %s",
                    key,
                    friendly_name(unified),
                    e,
                )
                return object_val(attributes)

        return map_val(converted)

    def render_tree(self) -> Tree:
        """
        Render the defaults as a styled rich Tree.
        """
        return self._render_node("")

    def _render_node(self, label: str) -> Tree:
        node = Tree(Text(f"{label}{friendly_name(self.type)}"), style="cyan")
        for name, default_value in sorted(self.default_values.items()):
            node.add(Text(f"default .{name} = {default_value!r}", style="yellow"))
        for key, defaults in self.children.items():
            node.children.append(defaults._render_node(f"{_key_label(key)}: "))
        return node

    def __rich__(self) -> Tree:
        return self.render_tree()
