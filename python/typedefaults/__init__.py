"""
Apply nested defaults to optional attributes of dynamically typed values.
"""

from . import setting
from .convert import convert, get_conversion, mismatch_message, unify
from .defaults import ELEMENT, Attribute, ChildKey, Defaults, Element, Index
from .errors import (
    ConversionError,
    InvariantViolation,
    MismatchError,
    NestingDepthError,
    TypeDefaultsError,
)
from .lib import get_settings, init
from .setting import Settings
from .types import (
    BOOL,
    DYNAMIC,
    NUMBER,
    STRING,
    ListType,
    MapType,
    ObjectType,
    PrimitiveType,
    SetType,
    Shape,
    TupleType,
    Type,
    analyze_type,
    friendly_name,
    object_type,
    shape_of,
)
from .values import (
    FALSE,
    TRUE,
    UNKNOWN,
    Value,
    bool_val,
    empty_list_val,
    empty_map_val,
    empty_set_val,
    from_python,
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

__all__ = [
    # Submodules
    "setting",
    # Library
    "init",
    "get_settings",
    "Settings",
    # Defaults
    "Defaults",
    "ChildKey",
    "Index",
    "Attribute",
    "Element",
    "ELEMENT",
    # Conversion
    "convert",
    "get_conversion",
    "unify",
    "mismatch_message",
    # Errors
    "TypeDefaultsError",
    "ConversionError",
    "MismatchError",
    "InvariantViolation",
    "NestingDepthError",
    # Types
    "Type",
    "Shape",
    "PrimitiveType",
    "ListType",
    "SetType",
    "MapType",
    "TupleType",
    "ObjectType",
    "STRING",
    "NUMBER",
    "BOOL",
    "DYNAMIC",
    "object_type",
    "shape_of",
    "friendly_name",
    "analyze_type",
    # Values
    "Value",
    "UNKNOWN",
    "TRUE",
    "FALSE",
    "null_val",
    "unknown_val",
    "string_val",
    "number_val",
    "bool_val",
    "list_val",
    "set_val",
    "map_val",
    "tuple_val",
    "object_val",
    "empty_list_val",
    "empty_set_val",
    "empty_map_val",
    "from_python",
]
