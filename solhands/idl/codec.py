"""Borsh-style binary codec for instruction arguments and account data."""

from __future__ import annotations

import hashlib
import struct
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from solders.pubkey import Pubkey

from ..errors import EncodingError, SchemaError
from ..util import coerce_pubkey
from .schema import ArgumentSpec, InstructionSchema

INT_TYPES: Dict[str, Tuple[int, bool]] = {
    "u8": (1, False),
    "i8": (1, True),
    "u16": (2, False),
    "i16": (2, True),
    "u32": (4, False),
    "i32": (4, True),
    "u64": (8, False),
    "i64": (8, True),
    "u128": (16, False),
    "i128": (16, True),
}
FLOAT_TYPES: Dict[str, str] = {"f32": "<f", "f64": "<d"}

# Guards against self-referencing defined types.
_MAX_DEPTH = 32


def discriminator(name: str) -> bytes:
    """Return the 8-byte Anchor instruction tag for ``name``."""
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


def account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode()).digest()[:8]


def is_integer_type(type_spec: Any) -> bool:
    return isinstance(type_spec, str) and type_spec in INT_TYPES


def encode_int(value: int, type_name: str) -> bytes:
    """Encode ``value`` little-endian at the width of ``type_name``.

    Values outside the declared range raise :class:`EncodingError`.
    """

    try:
        width, signed = INT_TYPES[type_name]
    except KeyError:
        raise EncodingError(f"{type_name!r} is not an integer type") from None
    if isinstance(value, bool) or not isinstance(value, int):
        raise EncodingError(f"{type_name} value must be an int, got {type(value).__name__}")
    bits = width * 8
    low, high = (-(1 << (bits - 1)), (1 << (bits - 1)) - 1) if signed else (0, (1 << bits) - 1)
    if value < low or value > high:
        raise EncodingError(f"{value} does not fit in {type_name}")
    return value.to_bytes(width, "little", signed=signed)


def decode_int(data: bytes, type_name: str, offset: int = 0) -> int:
    width, signed = INT_TYPES[type_name]
    chunk = data[offset : offset + width]
    if len(chunk) != width:
        raise EncodingError(f"need {width} bytes for {type_name} at offset {offset}")
    return int.from_bytes(chunk, "little", signed=signed)


def _u32(n: int) -> bytes:
    return encode_int(n, "u32")


def _defined_name(type_spec: Any) -> str | None:
    if isinstance(type_spec, Mapping) and isinstance(type_spec.get("defined"), str):
        return type_spec["defined"]
    return None


def _field_types(fields: Iterable[Any]) -> List[Tuple[str | None, Any]]:
    out: List[Tuple[str | None, Any]] = []
    for fld in fields or []:
        if isinstance(fld, Mapping) and "type" in fld:
            out.append((fld.get("name"), fld["type"]))
        else:
            out.append((None, fld))
    return out


def encode_default(type_spec: Any, types: Mapping[str, Any] | None = None, _depth: int = 0) -> bytes:
    """Return the zero/empty encoding for ``type_spec``.

    Options encode as none, vectors and strings as an empty length prefix,
    arrays recurse per element and known struct types recurse over their
    fields.  Unknown defined types degrade to zero bytes.
    """

    types = types or {}
    if _depth > _MAX_DEPTH:
        raise SchemaError("type nesting too deep")
    if isinstance(type_spec, str):
        if type_spec == "bool":
            return b"\x00"
        if type_spec in INT_TYPES:
            return bytes(INT_TYPES[type_spec][0])
        if type_spec in FLOAT_TYPES:
            return bytes(struct.calcsize(FLOAT_TYPES[type_spec]))
        if type_spec == "publicKey":
            return bytes(32)
        if type_spec in ("string", "bytes"):
            return _u32(0)
        return b""
    if isinstance(type_spec, Mapping):
        if "option" in type_spec or "coption" in type_spec:
            return b"\x00"
        if "vec" in type_spec:
            return _u32(0)
        if "array" in type_spec:
            elem, length = type_spec["array"]
            return b"".join(encode_default(elem, types, _depth + 1) for _ in range(int(length)))
        name = _defined_name(type_spec)
        if name is not None:
            if name.lower().startswith("option"):
                return b"\x00"
            layout = types.get(name)
            if isinstance(layout, Mapping) and layout.get("kind") == "struct":
                return b"".join(
                    encode_default(t, types, _depth + 1) for _, t in _field_types(layout.get("fields"))
                )
            if isinstance(layout, Mapping) and layout.get("kind") == "enum":
                variants = layout.get("variants") or []
                first = variants[0] if variants else {}
                return b"\x00" + b"".join(
                    encode_default(t, types, _depth + 1) for _, t in _field_types(first.get("fields"))
                )
            return b""
    return b""


def encode_value(type_spec: Any, value: Any, types: Mapping[str, Any] | None = None) -> bytes:
    """Encode an explicit ``value`` for ``type_spec``."""

    types = types or {}
    if isinstance(type_spec, str):
        if type_spec in INT_TYPES:
            return encode_int(value, type_spec)
        if type_spec == "bool":
            return b"\x01" if value else b"\x00"
        if type_spec in FLOAT_TYPES:
            return struct.pack(FLOAT_TYPES[type_spec], float(value))
        if type_spec == "publicKey":
            pk = coerce_pubkey(value)
            if pk is None:
                raise EncodingError(f"invalid public key {value!r}")
            return bytes(pk)
        if type_spec == "string":
            raw = str(value).encode()
            return _u32(len(raw)) + raw
        if type_spec == "bytes":
            raw = bytes(value)
            return _u32(len(raw)) + raw
        raise EncodingError(f"cannot encode value for type {type_spec!r}")
    if isinstance(type_spec, Mapping):
        if "option" in type_spec:
            if value is None:
                return b"\x00"
            return b"\x01" + encode_value(type_spec["option"], value, types)
        if "vec" in type_spec:
            items = list(value)
            return _u32(len(items)) + b"".join(encode_value(type_spec["vec"], v, types) for v in items)
        if "array" in type_spec:
            elem, length = type_spec["array"]
            items = list(value)
            if len(items) != int(length):
                raise EncodingError(f"array expects {length} items, got {len(items)}")
            return b"".join(encode_value(elem, v, types) for v in items)
        name = _defined_name(type_spec)
        if name is not None:
            layout = types.get(name)
            if not isinstance(layout, Mapping):
                raise EncodingError(f"unknown defined type {name!r}")
            if layout.get("kind") == "struct":
                if not isinstance(value, Mapping):
                    raise EncodingError(f"{name} expects a mapping value")
                return b"".join(
                    encode_value(t, value[fname], types) for fname, t in _field_types(layout.get("fields"))
                )
            if layout.get("kind") == "enum":
                return _encode_enum(name, layout, value, types)
    raise EncodingError(f"cannot encode value for type {type_spec!r}")


def _encode_enum(name: str, layout: Mapping[str, Any], value: Any, types: Mapping[str, Any]) -> bytes:
    variants = layout.get("variants") or []
    names = [v.get("name") for v in variants]
    # Option-style helper enums take the inner value directly.
    if names == ["None", "Some"]:
        if value is None:
            return b"\x00"
        inner = _field_types(variants[1].get("fields"))
        return b"\x01" + encode_value(inner[0][1], value, types)
    if isinstance(value, str) and value in names:
        idx = names.index(value)
        if variants[idx].get("fields"):
            raise EncodingError(f"{name}.{value} requires fields")
        return bytes([idx])
    raise EncodingError(f"unsupported value {value!r} for enum {name}")


def argument_role(name: str) -> str | None:
    """Classify an argument by name: ``"min_out"``, ``"amount"`` or ``None``."""

    nm = name.lower()
    if "min" in nm and "out" in nm:
        return "min_out"
    if any(tok in nm for tok in ("amount", "lamport", "sol", "token")) or "_in" in nm:
        return "amount"
    return None


def _arg_key(name: str) -> str:
    # matches snake_case overrides against camelCase (legacy) argument names
    return name.replace("_", "").lower()


def encode_arguments(
    args: Iterable[ArgumentSpec],
    *,
    amount: int,
    min_out: int = 0,
    overrides: Mapping[str, Any] | None = None,
    types: Mapping[str, Any] | None = None,
) -> bytes:
    """Serialise instruction arguments in declaration order.

    Explicit ``overrides`` win; integer arguments named like an output
    minimum receive ``min_out`` and those named like the moved quantity
    receive ``amount``.  Everything else takes its default encoding.
    """

    keyed = {_arg_key(k): v for k, v in (overrides or {}).items()}
    parts: List[bytes] = []
    for arg in args:
        key = _arg_key(arg.name)
        if key in keyed:
            parts.append(encode_value(arg.type, keyed[key], types))
            continue
        role = argument_role(arg.name)
        if role == "min_out" and is_integer_type(arg.type):
            parts.append(encode_int(int(min_out), arg.type))
        elif role == "amount" and is_integer_type(arg.type):
            parts.append(encode_int(int(amount), arg.type))
        else:
            parts.append(encode_default(arg.type, types))
    return b"".join(parts)


def _need(data: bytes, offset: int, size: int) -> None:
    if offset + size > len(data):
        raise EncodingError(f"account data too short: need {size} bytes at offset {offset}")


def decode_value(
    type_spec: Any, data: bytes, offset: int, types: Mapping[str, Any], _depth: int = 0
) -> Tuple[Any, int]:
    if _depth > _MAX_DEPTH:
        raise SchemaError("type nesting too deep")
    if isinstance(type_spec, str):
        if type_spec in INT_TYPES:
            width = INT_TYPES[type_spec][0]
            return decode_int(data, type_spec, offset), offset + width
        if type_spec == "bool":
            _need(data, offset, 1)
            return data[offset] != 0, offset + 1
        if type_spec in FLOAT_TYPES:
            size = struct.calcsize(FLOAT_TYPES[type_spec])
            _need(data, offset, size)
            return struct.unpack_from(FLOAT_TYPES[type_spec], data, offset)[0], offset + size
        if type_spec == "publicKey":
            _need(data, offset, 32)
            return Pubkey.from_bytes(data[offset : offset + 32]), offset + 32
        if type_spec in ("string", "bytes"):
            length = decode_int(data, "u32", offset)
            offset += 4
            _need(data, offset, length)
            raw = bytes(data[offset : offset + length])
            if type_spec == "string":
                try:
                    return raw.decode(), offset + length
                except UnicodeDecodeError as exc:
                    raise EncodingError(f"invalid utf-8 string at offset {offset}") from exc
            return raw, offset + length
        raise SchemaError(f"unsupported type {type_spec!r}")
    if isinstance(type_spec, Mapping):
        if "option" in type_spec:
            _need(data, offset, 1)
            if data[offset] == 0:
                return None, offset + 1
            return decode_value(type_spec["option"], data, offset + 1, types, _depth + 1)
        if "vec" in type_spec:
            length = decode_int(data, "u32", offset)
            offset += 4
            items = []
            for _ in range(length):
                item, offset = decode_value(type_spec["vec"], data, offset, types, _depth + 1)
                items.append(item)
            return items, offset
        if "array" in type_spec:
            elem, length = type_spec["array"]
            items = []
            for _ in range(int(length)):
                item, offset = decode_value(elem, data, offset, types, _depth + 1)
                items.append(item)
            return items, offset
        name = _defined_name(type_spec)
        if name is not None:
            layout = types.get(name)
            if not isinstance(layout, Mapping):
                raise SchemaError(f"unknown defined type {name!r}")
            return _decode_layout(layout, data, offset, types, _depth + 1)
    raise SchemaError(f"unsupported type {type_spec!r}")


def _decode_layout(
    layout: Mapping[str, Any], data: bytes, offset: int, types: Mapping[str, Any], _depth: int
) -> Tuple[Any, int]:
    kind = layout.get("kind")
    if kind == "struct":
        out: Dict[str, Any] = {}
        for idx, (fname, ftype) in enumerate(_field_types(layout.get("fields"))):
            out[fname or str(idx)], offset = decode_value(ftype, data, offset, types, _depth)
        return out, offset
    if kind == "enum":
        _need(data, offset, 1)
        idx = data[offset]
        offset += 1
        variants = layout.get("variants") or []
        if idx >= len(variants):
            raise EncodingError(f"enum variant {idx} out of range")
        variant = variants[idx]
        fields = _field_types(variant.get("fields"))
        if not fields:
            return variant.get("name"), offset
        values = {}
        for pos, (fname, ftype) in enumerate(fields):
            values[fname or str(pos)], offset = decode_value(ftype, data, offset, types, _depth)
        return {variant.get("name"): values}, offset
    raise SchemaError(f"unsupported layout kind {kind!r}")


def decode_account(schema: InstructionSchema, type_name: str, data: bytes) -> Dict[str, Any]:
    """Decode raw account ``data`` as the schema's account type ``type_name``.

    The leading 8-byte account discriminator must match, otherwise
    :class:`EncodingError` is raised.  Trailing bytes are ignored.
    """

    layout = schema.account_layout(type_name)
    if not isinstance(layout, Mapping) or layout.get("kind") != "struct":
        raise SchemaError(f"no struct layout for account type {type_name!r}")
    expected = schema.account_discriminators.get(type_name) or account_discriminator(type_name)
    if bytes(data[:8]) != expected:
        raise EncodingError(f"discriminator mismatch for account type {type_name}")
    decoded, _ = _decode_layout(layout, bytes(data), 8, schema.types, 0)
    return decoded


__all__ = [
    "FLOAT_TYPES",
    "INT_TYPES",
    "account_discriminator",
    "argument_role",
    "decode_account",
    "decode_int",
    "decode_value",
    "discriminator",
    "encode_arguments",
    "encode_default",
    "encode_int",
    "encode_value",
    "is_integer_type",
]
