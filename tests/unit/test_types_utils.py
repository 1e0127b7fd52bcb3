import typing

from core.types_registry import get_type
from core.types_utils import parse_type, registered_type_name


def test_parse_type_basic():
    assert parse_type(int) == {"base": "int"}
    assert parse_type(str) == {"base": "str"}
    assert parse_type(bool) == {"base": "bool"}


def test_parse_type_any():
    assert parse_type(typing.Any) == {"base": "Any"}


def test_parse_type_list():
    assert parse_type(list) == {"base": "list", "subtypes": [{"base": "Any"}]}
    assert parse_type(list[str]) == {"base": "list", "subtypes": [{"base": "str"}]}


def test_parse_type_dict():
    assert parse_type(dict) == {
        "base": "dict",
        "key_type": {"base": "Any"},
        "value_type": {"base": "Any"},
    }
    assert parse_type(dict[str, int]) == {
        "base": "dict",
        "key_type": {"base": "str"},
        "value_type": {"base": "int"},
    }


def test_parse_type_union():
    assert parse_type(typing.Union[int, str]) == {
        "base": "union",
        "subtypes": [{"base": "int"}, {"base": "str"}],
    }


def test_parse_type_optional_is_unwrapped():
    assert parse_type(typing.Optional[str]) == {"base": "str"}
    assert parse_type(list[str] | None) == {"base": "list", "subtypes": [{"base": "str"}]}
    assert parse_type(str | int | None) == {
        "base": "union",
        "subtypes": [{"base": "str"}, {"base": "int"}],
    }


def test_parse_type_no_origin():
    assert parse_type(type(None)) == {"base": "NoneType"}


def test_parse_type_custom_class():
    class CustomClass:
        pass

    assert parse_type(CustomClass) == {"base": "CustomClass"}


def test_registered_types_reported_by_name():
    assert parse_type(get_type("WorkflowItemList")) == {"base": "WorkflowItemList"}
    assert parse_type(get_type("BinaryData")) == {"base": "BinaryData"}


def test_optional_registered_type_matches_plain():
    """An optional items input connects to a plain items output."""
    optional_items = get_type("WorkflowItemList") | None
    assert parse_type(optional_items) == parse_type(get_type("WorkflowItemList"))


def test_registered_type_name_unknown():
    assert registered_type_name(int) is None
    assert registered_type_name(get_type("WorkflowItem")) == "WorkflowItem"
