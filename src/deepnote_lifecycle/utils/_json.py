from typing import cast

import orjson


def load_json(json_str: str | bytes) -> dict[str, object] | list[object] | None:
    """Load and parse a JSON document.

    Args:
        json_str: The JSON text to parse.

    Returns:
        The parsed JSON data as a dictionary or list, or None if parsing fails.
    """
    try:
        return cast("dict[str, object] | list[object]", orjson.loads(json_str))
    except orjson.JSONDecodeError:
        return None


def dump_json(data: object, *, indent: bool = False) -> bytes:
    """Serialize data to JSON bytes.

    Args:
        data: The value to serialize.
        indent: Whether to pretty-print with two-space indentation.

    Returns:
        The UTF-8 encoded JSON document.
    """
    return orjson.dumps(data, option=orjson.OPT_INDENT_2 if indent else 0)
