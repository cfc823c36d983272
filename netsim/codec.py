"""Value codec for simulated RPC payloads and persisted state.

Every value is copied through a self-delimiting tagged JSON frame, so a
receiver never shares references with the sender. Dataclass fields whose
names start with an underscore are private and are not transmitted; the
codec warns once per class about such fields. It also warns when a value is
decoded into an instance that already holds non-default values.
"""

from __future__ import annotations

import base64
import binascii
import dataclasses
import io
import json
import struct
import threading
from typing import Any, BinaryIO, Iterator

__all__ = [
    "CodecError",
    "Decoder",
    "Encoder",
    "dumps",
    "error_count",
    "loads",
    "register",
    "register_name",
]

_HEADER = struct.Struct(">I")

_lock = threading.Lock()
_error_count = 0
_checked: set[type] = set()
_registry: dict[str, type] = {}
_names: dict[type, str] = {}
_explicit: dict[str, type] = {}

_ZEROS: dict[Any, Any] = {
    int: 0,
    "int": 0,
    float: 0.0,
    "float": 0.0,
    str: "",
    "str": "",
    bool: False,
    "bool": False,
    bytes: b"",
    "bytes": b"",
}


class CodecError(ValueError):
    """Raised when a value cannot be encoded or a frame cannot be decoded."""


def error_count() -> int:
    """Number of warnings issued so far about private fields or non-default targets."""
    with _lock:
        return _error_count


def _is_instance(value: Any) -> bool:
    return dataclasses.is_dataclass(value) and not isinstance(value, type)


def _qualified_name(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


def _check_type(cls: type) -> None:
    global _error_count
    with _lock:
        if cls in _checked:
            return
        _checked.add(cls)
    if not dataclasses.is_dataclass(cls):
        return
    for f in dataclasses.fields(cls):
        if f.name.startswith("_"):
            print(
                f"codec error: private field {f.name} of {cls.__name__} "
                "in RPC or persist/snapshot will not be transmitted"
            )
            with _lock:
                _error_count += 1


def _check_value(value: Any) -> None:
    if _is_instance(value):
        _check_type(type(value))
        for f in dataclasses.fields(value):
            _check_value(getattr(value, f.name, None))
    elif isinstance(value, dict):
        for key, item in value.items():
            _check_value(key)
            _check_value(item)
    elif isinstance(value, (list, tuple, set, frozenset)):
        for item in value:
            _check_value(item)


def _check_default(value: Any, depth: int = 1, name: str = "") -> None:
    global _error_count
    if depth > 2 or value is None:
        return
    if _is_instance(value):
        for f in dataclasses.fields(value):
            path = f"{name}.{f.name}" if name else f.name
            _check_default(getattr(value, f.name, None), depth + 1, path)
    elif isinstance(value, (bool, int, float, str)) and value != type(value)():
        with _lock:
            if _error_count < 1:
                # Usually a reply object reused across calls, or persisted
                # state restored into an object that was already populated.
                what = name or type(value).__name__
                print(f"codec warning: decoding into a non-default variable/field {what} may not work")
            _error_count += 1


def register_name(name: str, value: Any) -> None:
    """Register a dataclass (given as class or instance) under an explicit wire name."""
    cls = value if isinstance(value, type) else type(value)
    if not dataclasses.is_dataclass(cls):
        raise TypeError(f"only dataclasses can be registered, not {cls.__name__}")
    _check_type(cls)
    with _lock:
        existing = _explicit.get(name)
        if existing is not None and existing is not cls:
            raise CodecError(f"name {name!r} is already registered for {existing.__name__}")
        for other_name, other_cls in _explicit.items():
            if other_cls is cls and other_name != name:
                raise CodecError(f"{cls.__name__} is already registered as {other_name!r}")
        _explicit[name] = cls
        _registry[name] = cls
        _names[cls] = name


def register(value: Any) -> None:
    """Register a dataclass (given as class or instance) under its qualified name."""
    cls = value if isinstance(value, type) else type(value)
    if not dataclasses.is_dataclass(cls):
        raise TypeError(f"only dataclasses can be registered, not {cls.__name__}")
    register_name(_qualified_name(cls), cls)


def _wire_name(cls: type) -> str:
    with _lock:
        name = _names.get(cls)
        if name is None:
            name = _qualified_name(cls)
            _names[cls] = name
            _registry[name] = cls
        return name


def _to_tree(value: Any) -> Any:
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        return float(value)
    if isinstance(value, (bytes, bytearray)):
        return {"$b": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, list):
        return [_to_tree(item) for item in value]
    if isinstance(value, tuple):
        return {"$t": [_to_tree(item) for item in value]}
    if isinstance(value, frozenset):
        return {"$fs": [_to_tree(item) for item in value]}
    if isinstance(value, set):
        return {"$s": [_to_tree(item) for item in value]}
    if isinstance(value, dict):
        return {"$d": [[_to_tree(k), _to_tree(v)] for k, v in value.items()]}
    if _is_instance(value):
        fields = {
            f.name: _to_tree(getattr(value, f.name))
            for f in dataclasses.fields(value)
            if not f.name.startswith("_")
        }
        return {"$o": _wire_name(type(value)), "f": fields}
    raise CodecError(f"cannot encode value of type {type(value).__name__}")


def _zero(f: dataclasses.Field) -> Any:
    if f.default is not dataclasses.MISSING:
        return f.default
    if f.default_factory is not dataclasses.MISSING:
        return f.default_factory()
    try:
        return _ZEROS.get(f.type)
    except TypeError:
        return None


def _lookup(name: str) -> type:
    with _lock:
        cls = _registry.get(name)
    if cls is None:
        raise CodecError(f"unknown type name {name!r} in frame")
    return cls


def _build(cls: type, fields: dict) -> Any:
    obj = cls.__new__(cls)
    for f in dataclasses.fields(cls):
        value = _from_tree(fields[f.name]) if f.name in fields else _zero(f)
        object.__setattr__(obj, f.name, value)
    return obj


def _pairs(pairs: list) -> Iterator[tuple[Any, Any]]:
    for pair in pairs:
        match pair:
            case [key, value]:
                yield _from_tree(key), _from_tree(value)
            case _:
                raise CodecError("malformed mapping entry in frame")


def _from_tree(tree: Any) -> Any:
    match tree:
        case None | bool() | int() | float() | str():
            return tree
        case list():
            return [_from_tree(item) for item in tree]
        case {"$b": str(text)}:
            try:
                return base64.b64decode(text, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise CodecError("malformed bytes in frame") from exc
        case {"$t": list(items)}:
            return tuple(_from_tree(item) for item in items)
        case {"$fs": list(items)}:
            return frozenset(_from_tree(item) for item in items)
        case {"$s": list(items)}:
            return {_from_tree(item) for item in items}
        case {"$d": list(pairs)}:
            return dict(_pairs(pairs))
        case {"$o": str(name), "f": dict(fields)}:
            return _build(_lookup(name), fields)
    raise CodecError("malformed frame")


def _frame(value: Any) -> bytes:
    payload = json.dumps(_to_tree(value), separators=(",", ":")).encode("utf-8")
    return _HEADER.pack(len(payload)) + payload


def _parse(payload: bytes) -> Any:
    try:
        return _from_tree(json.loads(payload.decode("utf-8")))
    except CodecError:
        raise
    except (TypeError, ValueError) as exc:
        raise CodecError(f"malformed frame: {exc}") from exc


def _prepare(target: Any) -> None:
    if target is None:
        return
    if isinstance(target, type):
        _check_type(target)
    elif _is_instance(target):
        _check_value(target)
        _check_default(target)
    else:
        raise TypeError("decode target must be None, a type or a dataclass instance")


def _apply(value: Any, target: Any) -> Any:
    if target is None:
        return value
    if isinstance(target, type):
        if not isinstance(value, target):
            raise CodecError(f"expected {target.__name__}, got {type(value).__name__}")
        return value
    if type(value) is not type(target):
        raise CodecError(f"expected {type(target).__name__}, got {type(value).__name__}")
    for f in dataclasses.fields(target):
        if not f.name.startswith("_"):
            object.__setattr__(target, f.name, getattr(value, f.name))
    return target


class Encoder:
    """Writes framed values to a binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream

    def encode(self, value: Any) -> None:
        _check_value(value)
        self._stream.write(_frame(value))


class Decoder:
    """Reads framed values from a binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream

    def decode(self, target: Any = None) -> Any:
        """Decode the next value.

        ``target`` may be None, an expected type, or a dataclass instance whose
        transmitted fields are overwritten in place; the decoded value (or the
        updated instance) is returned. Raises EOFError when the stream is empty.
        """
        _prepare(target)
        header = self._stream.read(_HEADER.size)
        if not header:
            raise EOFError("no more values in stream")
        if len(header) < _HEADER.size:
            raise CodecError("truncated frame header")
        (size,) = _HEADER.unpack(header)
        payload = self._stream.read(size)
        if len(payload) < size:
            raise CodecError("truncated frame payload")
        return _apply(_parse(payload), target)


def dumps(value: Any) -> bytes:
    """Encode one value as a single frame."""
    _check_value(value)
    return _frame(value)


def loads(data: bytes) -> Any:
    """Decode exactly one frame."""
    stream = io.BytesIO(data)
    try:
        value = Decoder(stream).decode()
    except EOFError as exc:
        raise CodecError("empty input") from exc
    if stream.read(1):
        raise CodecError("trailing data after frame")
    return value