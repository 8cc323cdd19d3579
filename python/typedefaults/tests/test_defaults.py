import dataclasses
import io
import logging
from concurrent.futures import ThreadPoolExecutor

import pytest
from rich.console import Console

from typedefaults import lib
from typedefaults.defaults import ELEMENT, Attribute, Defaults, Index
from typedefaults.errors import (
    ConversionError,
    InvariantViolation,
    MismatchError,
    NestingDepthError,
)
from typedefaults.setting import Settings
from typedefaults.types import (
    BOOL,
    DYNAMIC,
    NUMBER,
    STRING,
    ListType,
    MapType,
    SetType,
    TupleType,
    object_type,
)
from typedefaults.values import (
    FALSE,
    TRUE,
    Value,
    empty_list_val,
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

# object{c: optional(bool, default=true)}
C_TYPE = object_type({"c": BOOL}, optional=["c"])
C_VALUE_TYPE = object_type({"c": BOOL})

# object{a: optional(number, default=0), b: optional(list(C_TYPE), default=[])}
ROOT_TYPE = object_type({"a": NUMBER, "b": ListType(C_TYPE)}, optional=["a", "b"])


def make_c_defaults() -> Defaults:
    return Defaults(C_TYPE, default_values={"c": TRUE})


def make_root_defaults() -> Defaults:
    return Defaults(
        ROOT_TYPE,
        default_values={"a": number_val(0), "b": empty_list_val(C_VALUE_TYPE)},
        children={
            Attribute("b"): Defaults(
                ListType(C_TYPE), children={ELEMENT: make_c_defaults()}
            ),
        },
    )


def test_fills_nested_optional_attributes() -> None:
    value = object_val(
        {
            "a": null_val(NUMBER),
            "b": list_val([object_val({"c": null_val(BOOL)})]),
        }
    )
    result = make_root_defaults().apply(value)
    assert result == object_val(
        {
            "a": number_val(0),
            "b": list_val([object_val({"c": TRUE})]),
        }
    )


def test_fills_nested_optional_attributes_with_conversion() -> None:
    value = object_val(
        {
            "a": null_val(NUMBER),
            "b": list_val([object_val({"c": null_val(BOOL)})]),
        }
    )
    result = make_root_defaults().apply_and_convert(value)
    assert result.to_python() == {"a": 0, "b": [{"c": True}]}
    assert isinstance(result.type.attribute_type("b"), ListType)


def test_fills_missing_attributes() -> None:
    result = make_root_defaults().apply(object_val({}))
    assert result == object_val(
        {"a": number_val(0), "b": empty_list_val(C_VALUE_TYPE)}
    )


def test_keeps_present_attributes() -> None:
    value = object_val(
        {
            "a": number_val(42),
            "b": tuple_val([object_val({"c": FALSE}), object_val({})]),
        }
    )
    result = make_root_defaults().apply(value)
    assert result.to_python() == {"a": 42, "b": [{"c": False}, {"c": True}]}


@pytest.mark.parametrize(
    "value",
    [
        number_val(1),
        string_val("x"),
        object_val({"a": null_val(NUMBER)}),
        list_val([object_val({})]),
        tuple_val([number_val(1), string_val("x")]),
        object_val({"a": null_val(NUMBER)}).mark("sensitive"),
    ],
)
def test_empty_defaults_is_noop(value: Value) -> None:
    for t in (ROOT_TYPE, ListType(C_TYPE), NUMBER):
        defaults = Defaults(t)
        assert defaults.is_empty
        assert defaults.apply(value) is value
        assert defaults.apply_and_convert(value) is value


@pytest.mark.parametrize(
    "value",
    [
        null_val(ROOT_TYPE),
        unknown_val(ROOT_TYPE),
        null_val(DYNAMIC),
        null_val(ROOT_TYPE).mark("sensitive"),
        unknown_val(DYNAMIC).mark("sensitive"),
    ],
)
def test_null_and_unknown_pass_through(value: Value) -> None:
    defaults = make_root_defaults()
    assert defaults.apply(value) is value
    assert defaults.apply_and_convert(value) is value


def test_null_elements_are_not_replaced() -> None:
    value = object_val(
        {"b": list_val([null_val(C_VALUE_TYPE), object_val({"c": null_val(BOOL)})])}
    )
    result = make_root_defaults().apply(value)
    assert result.as_value_map()["b"] == list_val(
        [null_val(C_VALUE_TYPE), object_val({"c": TRUE})]
    )


@pytest.mark.parametrize(
    "value",
    [
        object_val({}),
        object_val({"a": null_val(NUMBER), "b": null_val(ListType(C_VALUE_TYPE))}),
        object_val({"b": tuple_val([object_val({}), object_val({"c": FALSE})])}),
        object_val({"a": number_val(3), "extra": string_val("kept")}),
    ],
)
def test_apply_is_idempotent(value: Value) -> None:
    defaults = make_root_defaults()
    once = defaults.apply(value)
    assert defaults.apply(once) == once
    converted = defaults.apply_and_convert(value)
    assert defaults.apply_and_convert(converted) == converted


def test_marks_are_preserved() -> None:
    inner = object_val({}).mark("inner")
    value = object_val({"b": list_val([inner])}).mark("sensitive", "secret")

    result = make_root_defaults().apply(value)

    bare, marks = result.unmark()
    assert marks == frozenset({"sensitive", "secret"})
    [element] = bare.as_value_map()["b"].as_value_slice()
    element, element_marks = element.unmark()
    assert element_marks == frozenset({"inner"})
    assert element == object_val({"c": TRUE})


def test_marks_are_preserved_with_conversion() -> None:
    value = object_val({"a": number_val(1)}).mark("sensitive")
    result = make_root_defaults().apply_and_convert(value)
    assert result.marks == frozenset({"sensitive"})


def test_deep_nesting_in_maps() -> None:
    element_type = object_type({"c": BOOL, "d": ListType(C_TYPE)}, optional=["c", "d"])
    defaults = Defaults(
        MapType(element_type),
        children={
            ELEMENT: Defaults(
                element_type,
                default_values={"c": TRUE},
                children={
                    Attribute("d"): Defaults(
                        ListType(C_TYPE), children={ELEMENT: make_c_defaults()}
                    )
                },
            )
        },
    )
    value = map_val(
        {
            "x": object_val({"c": FALSE, "d": list_val([object_val({})])}),
            "y": object_val({"c": null_val(BOOL), "d": list_val([object_val({})])}),
        }
    )

    result = defaults.apply(value)

    assert isinstance(result.type, MapType)
    assert result.to_python() == {
        "x": {"c": False, "d": [{"c": True}]},
        "y": {"c": True, "d": [{"c": True}]},
    }


def test_default_values_get_their_own_defaults() -> None:
    inner_type = object_type({"x": NUMBER, "y": STRING}, optional=["x"])
    outer_type = object_type({"inner": inner_type}, optional=["inner"])
    defaults = Defaults(
        outer_type,
        default_values={"inner": object_val({"y": string_val("given")})},
        children={
            Attribute("inner"): Defaults(
                inner_type, default_values={"x": number_val(1)}
            )
        },
    )

    result = defaults.apply(object_val({}))

    assert result == object_val(
        {"inner": object_val({"x": number_val(1), "y": string_val("given")})}
    )


def test_tuple_positions() -> None:
    defaults = Defaults(
        TupleType((C_TYPE, NUMBER, C_TYPE)),
        children={Index(0): make_c_defaults()},
    )
    value = tuple_val([object_val({}), number_val(5), object_val({})])

    result = defaults.apply(value)

    assert result == tuple_val([object_val({"c": TRUE}), number_val(5), object_val({})])


def test_set_elements() -> None:
    defaults = Defaults(SetType(C_TYPE), children={ELEMENT: make_c_defaults()})
    value = set_val([object_val({"c": null_val(BOOL)}), object_val({"c": FALSE})])

    result = defaults.apply(value)

    assert isinstance(result.type, SetType)
    assert result == set_val([object_val({"c": TRUE}), object_val({"c": FALSE})])


def test_empty_collections_keep_their_type() -> None:
    list_defaults = Defaults(ListType(C_TYPE), children={ELEMENT: make_c_defaults()})
    empty = empty_list_val(C_VALUE_TYPE)
    assert list_defaults.apply(empty) == empty


def test_heterogeneous_elements_fall_back_to_tuple(
    caplog: pytest.LogCaptureFixture,
) -> None:
    element_type = object_type({"c": STRING}, optional=["c"])
    defaults = Defaults(
        ListType(element_type),
        children={ELEMENT: Defaults(element_type, default_values={"c": TRUE})},
    )
    value = list_val(
        [object_val({"c": null_val(STRING)}), object_val({"c": string_val("x")})]
    )

    with caplog.at_level(logging.DEBUG, logger="typedefaults.defaults"):
        result = defaults.apply(value)

    assert result == tuple_val(
        [object_val({"c": TRUE}), object_val({"c": string_val("x")})]
    )
    assert "No common type" in caplog.text


def test_heterogeneous_map_falls_back_to_object() -> None:
    defaults = Defaults(MapType(STRING), default_values={"b": number_val(1)})
    value = map_val({"a": string_val("x")})

    result = defaults.apply(value)

    assert result == object_val({"a": string_val("x"), "b": number_val(1)})


def test_elements_with_different_attributes_fall_back_to_tuple(
    caplog: pytest.LogCaptureFixture,
) -> None:
    element_type = object_type({"a": NUMBER, "d": STRING}, optional=["d"])
    defaults = Defaults(
        ListType(element_type),
        children={
            ELEMENT: Defaults(element_type, default_values={"d": string_val("x")})
        },
    )
    bare_type = object_type({"a": NUMBER})
    value = list_val([null_val(bare_type), object_val({"a": number_val(1)})])

    with caplog.at_level(logging.DEBUG, logger="typedefaults.defaults"):
        result = defaults.apply(value)

    assert result == tuple_val(
        [null_val(bare_type), object_val({"a": number_val(1), "d": string_val("x")})]
    )
    assert "No common type" in caplog.text

    converted = defaults.apply_and_convert(value)
    assert converted.type == ListType(element_type)
    assert converted.to_python() == [None, {"a": 1, "d": "x"}]


def test_map_elements_are_unified() -> None:
    defaults = Defaults(
        MapType(ListType(NUMBER)), default_values={"b": empty_list_val(DYNAMIC)}
    )
    value = map_val({"a": list_val([number_val(1)])})

    result = defaults.apply(value)

    assert result == map_val(
        {"a": list_val([number_val(1)]), "b": empty_list_val(NUMBER)}
    )


def test_objects_stay_objects_without_conversion() -> None:
    # Only applying with conversion turns an object value into the declared map.
    defaults = Defaults(MapType(NUMBER), default_values={"b": number_val(2)})
    value = object_val({"a": number_val(1)})

    assert defaults.apply(value) == object_val({"a": number_val(1), "b": number_val(2)})
    assert defaults.apply_and_convert(value) == map_val(
        {"a": number_val(1), "b": number_val(2)}
    )


def test_conversion_to_declared_list() -> None:
    defaults = Defaults(ListType(C_TYPE), children={ELEMENT: make_c_defaults()})
    value = tuple_val([object_val({}), object_val({"c": FALSE})])

    assert defaults.apply(value) == tuple_val(
        [object_val({"c": TRUE}), object_val({"c": FALSE})]
    )
    result = defaults.apply_and_convert(value)
    assert result.type == ListType(C_TYPE)
    assert result.to_python() == [{"c": True}, {"c": False}]


def test_conversion_of_convertible_strings() -> None:
    target = object_type({"a": NUMBER, "b": BOOL}, optional=["b"])
    defaults = Defaults(target, default_values={"b": FALSE})
    result = defaults.apply_and_convert(object_val({"a": string_val("12")}))
    assert result.type == target
    assert result.as_value_map() == {"a": number_val(12), "b": FALSE}


def test_conversion_mismatch() -> None:
    target = object_type({"a": NUMBER}, optional=["a"])
    defaults = Defaults(target, default_values={"a": number_val(0)})
    value = object_val({"a": string_val("not a number")})

    with pytest.raises(MismatchError) as exc_info:
        defaults.apply_and_convert(value)

    assert exc_info.value.source_type == object_type({"a": STRING})
    assert exc_info.value.target_type == target
    assert str(exc_info.value) == 'attribute "a": number required'
    assert isinstance(exc_info.value.__cause__, ConversionError)


def test_conversion_mismatch_in_nested_element() -> None:
    value = object_val({"b": list_val([object_val({"c": string_val("maybe")})])})
    with pytest.raises(MismatchError) as exc_info:
        make_root_defaults().apply_and_convert(value)
    assert exc_info.value.target_type == C_TYPE
    assert str(exc_info.value) == 'attribute "c": bool required'


def test_conversion_mismatch_in_list_element() -> None:
    defaults = Defaults(ListType(NUMBER), children={ELEMENT: Defaults(NUMBER)})
    value = tuple_val([number_val(1), string_val("one")])

    with pytest.raises(MismatchError) as exc_info:
        defaults.apply_and_convert(value)

    assert exc_info.value.target_type == ListType(NUMBER)
    assert str(exc_info.value) == "element 1: number required"


def test_plain_apply_turns_conversion_failures_into_invariant_violations(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def broken_unify(self: Defaults, target: object, attributes: object) -> Value:
        raise ConversionError("a number is required", [".a"])

    monkeypatch.setattr(Defaults, "_unify_from_map", broken_unify)

    with pytest.raises(InvariantViolation) as exc_info:
        make_root_defaults().apply(object_val({}))
    assert ".a: a number is required" in str(exc_info.value)


def test_maximum_depth() -> None:
    value = object_val({"b": list_val([object_val({})])})

    lib.init(Settings(max_depth=2))
    with pytest.raises(NestingDepthError):
        make_root_defaults().apply(value)

    lib.reset()
    lib.init(Settings(max_depth=3))
    assert make_root_defaults().apply(value).to_python() == {
        "a": 0,
        "b": [{"c": True}],
    }


def test_child_lookup() -> None:
    element = make_c_defaults()
    assert Defaults(ListType(C_TYPE), children={ELEMENT: element}).child(3) is element
    assert Defaults(MapType(C_TYPE), children={ELEMENT: element}).child("k") is element

    tuple_defaults = Defaults(
        TupleType((NUMBER, C_TYPE)), children={Index(1): element}
    )
    assert tuple_defaults.child(1) is element
    assert tuple_defaults.child(0) is None
    assert tuple_defaults.child("1") is None

    root = make_root_defaults()
    assert root.child("b") is root.children[Attribute("b")]
    assert root.child("a") is None
    assert root.child(0) is None
    assert Defaults(NUMBER, children={ELEMENT: element}).child(0) is None


def test_defaults_are_read_only() -> None:
    source = {"a": number_val(0)}
    defaults = Defaults(ROOT_TYPE, default_values=source)
    source["b"] = empty_list_val(C_VALUE_TYPE)

    assert "b" not in defaults.default_values
    with pytest.raises(TypeError):
        defaults.default_values["a"] = number_val(1)  # type: ignore[index]
    with pytest.raises(dataclasses.FrozenInstanceError):
        defaults.type = NUMBER  # type: ignore[misc]


def test_shared_across_threads() -> None:
    defaults = make_root_defaults()
    default_values = dict(defaults.default_values)
    children = dict(defaults.children)
    values = [
        object_val(
            {
                "a": number_val(i),
                "b": tuple_val([object_val({}), object_val({"c": FALSE})]),
            }
        )
        for i in range(16)
    ] + [object_val({}), object_val({"b": list_val([object_val({})])})]
    expected = [defaults.apply(v) for v in values]
    expected_converted = [defaults.apply_and_convert(v) for v in values]

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(executor.map(defaults.apply, values * 4))
        converted = list(executor.map(defaults.apply_and_convert, values * 4))

    assert results == expected * 4
    assert converted == expected_converted * 4
    assert dict(defaults.default_values) == default_values
    assert dict(defaults.children) == children


def test_render_tree() -> None:
    console = Console(file=io.StringIO(), record=True, width=120)
    console.print(make_root_defaults().render_tree())
    text = console.export_text()

    assert "object" in text
    assert "default .a = Value(number, 0)" in text
    assert ".b: list of object" in text
    assert "[*]: object" in text
    assert "default .c = Value(bool, True)" in text
