# pyright: standard

from typing import Any

import msgspec


def to_json(obj: object) -> bytes:
    """Encode an object to compact JSON bytes using msgspec."""
    return msgspec.json.encode(obj)


def to_pretty_json(obj: object, indent: int = 2) -> bytes:
    """Encode an object to indented JSON bytes."""
    return msgspec.json.format(msgspec.json.encode(obj), indent=indent)


def loads_any(data: bytes | str) -> Any:
    """Decode JSON into plain builtins (dict, list, str, ...). Raises msgspec.DecodeError."""
    return msgspec.json.decode(data)


def convert[T](obj: object, type_spec: type[T]) -> T:
    """Convert an object to the specified type using msgspec."""
    return msgspec.convert(obj, type_spec)
