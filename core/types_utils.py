import types
import typing
from typing import Any

from core.types_registry import TYPE_REGISTRY


def registered_type_name(type_hint: Any) -> str | None:
    """Name under which a type is registered in TYPE_REGISTRY, if any."""
    for name, registered in TYPE_REGISTRY.items():
        if registered == type_hint:
            return name
    return None


def parse_type(type_hint: Any) -> dict[str, Any]:
    """
    Parse a Python type hint into a structured dictionary representation.

    Args:
        type_hint: The type hint to parse (e.g., int, List[str], Dict[str, int])

    Returns:
        Dictionary with 'base' key and optional 'subtypes', 'key_type', 'value_type'.
        Registered domain types (e.g. WorkflowItemList) are reported by name.
    """
    registered = registered_type_name(type_hint)
    if registered is not None:
        return {"base": registered}

    origin = typing.get_origin(type_hint)

    if origin is None:
        # Simple types (int, str, float, etc.)
        name = getattr(type_hint, "__name__", str(type_hint))

        if name == "Any" or name.endswith(".Any"):
            return {"base": "Any"}
        elif type_hint in (list, set, tuple):
            return {"base": name, "subtypes": [{"base": "Any"}]}
        elif type_hint is dict:
            return {"base": name, "key_type": {"base": "Any"}, "value_type": {"base": "Any"}}
        else:
            return {"base": name}

    args = typing.get_args(type_hint)

    if origin is typing.Union or origin is types.UnionType:
        # Optional[T] is reported as T
        filtered_args = [arg for arg in args if arg is not type(None)]
        if not filtered_args:
            return {"base": "NoneType"}
        if len(filtered_args) == 1:
            return parse_type(filtered_args[0])
        return {"base": "union", "subtypes": [parse_type(arg) for arg in filtered_args]}

    base = getattr(type_hint, "_name", None) or getattr(origin, "__name__", str(origin))

    if origin is dict:
        key_type = parse_type(args[0]) if args else None
        value_type = parse_type(args[1]) if len(args) > 1 else None
        return {"base": base, "key_type": key_type, "value_type": value_type}

    return {"base": base, "subtypes": [parse_type(arg) for arg in args]}
