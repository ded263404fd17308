from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import List, Sequence, Tuple, Union

"""Binary control messages (the OSC subset used by the drum machine).

Layout: address string, type tag string, then one 4-byte big-endian value per
tag letter. Strings are ASCII, NUL-terminated and zero-padded so the field
length is a multiple of 4. Only 'i' (int32) and 'f' (float32) are supported.
"""


NAMESPACE = "/redacted-dm"

Arg = Tuple[str, Union[int, float]]

_PACKERS = {
    "i": struct.Struct(">i"),
    "f": struct.Struct(">f"),
}
_INT32_MIN = -(2 ** 31)
_INT32_MAX = 2 ** 31 - 1


@dataclass(frozen=True)
class Decoded:
    address: str
    type_tags: str
    args: Tuple[Union[int, float], ...]


@dataclass(frozen=True)
class Unparsed:
    """Payload that could not be read as a control message; only its size is known."""

    size: int


DecodeResult = Union[Decoded, Unparsed]


def padded_size(n: int) -> int:
    """Field size for a string of n characters: n + NUL rounded up to 4."""
    return ((n + 1 + 3) // 4) * 4


def encode_string(s: str) -> bytes:
    raw = s.encode("ascii")
    if b"\x00" in raw:
        raise ValueError("control message strings may not contain NUL")
    return raw + b"\x00" * (padded_size(len(raw)) - len(raw))


def encode(address: str, args: Sequence[Arg] = ()) -> bytes:
    """Encode address + typed args, e.g. encode("/x", [("i", 3), ("f", 1.0)])."""
    tags = ","
    parts: List[bytes] = [encode_string(address)]
    values: List[bytes] = []
    for tag, value in args:
        packer = _PACKERS.get(tag)
        if packer is None:
            raise ValueError(f"unsupported argument type {tag!r}")
        if tag == "i":
            iv = int(value)
            if iv < _INT32_MIN or iv > _INT32_MAX:
                raise ValueError(f"int32 out of range: {iv}")
            values.append(packer.pack(iv))
        else:
            try:
                values.append(packer.pack(float(value)))
            except (struct.error, OverflowError) as e:
                raise ValueError(f"float32 out of range: {value!r}") from e
        tags += tag
    parts.append(encode_string(tags))
    parts.extend(values)
    return b"".join(parts)


def _read_string(data: bytes, offset: int) -> Tuple[str, int]:
    end = data.find(b"\x00", offset)
    if end < 0:
        raise ValueError("unterminated string")
    nxt = offset + padded_size(end - offset)
    if nxt > len(data):
        raise ValueError("string padding runs past end of payload")
    if data[end:nxt].strip(b"\x00"):
        raise ValueError("non-zero string padding")
    return data[offset:end].decode("ascii"), nxt


def decode(data: bytes) -> DecodeResult:
    """Decode a payload. Never raises: malformed input yields Unparsed(len(data))."""
    try:
        buf = bytes(data)
    except Exception:
        return Unparsed(0)
    try:
        address, off = _read_string(buf, 0)
        if not address:
            raise ValueError("empty address")
        tags, off = _read_string(buf, off)
        if not tags.startswith(","):
            raise ValueError("type tag must start with ','")
        args: List[Union[int, float]] = []
        for tag in tags[1:]:
            packer = _PACKERS.get(tag)
            if packer is None:
                raise ValueError(f"unsupported argument type {tag!r}")
            if off + packer.size > len(buf):
                raise ValueError("truncated argument")
            args.append(packer.unpack_from(buf, off)[0])
            off += packer.size
        if off != len(buf):
            raise ValueError("trailing bytes after arguments")
        return Decoded(address=address, type_tags=tags, args=tuple(args))
    except (ValueError, UnicodeDecodeError, struct.error):
        return Unparsed(len(buf))


def trigger_address(namespace: str = NAMESPACE) -> str:
    return f"{namespace}/trigger"


def step_address(namespace: str = NAMESPACE) -> str:
    return f"{namespace}/step"


def trigger_message(area_index: int, redacted_index: int, velocity: float = 1.0, namespace: str = NAMESPACE) -> bytes:
    return encode(trigger_address(namespace), [("i", area_index), ("i", redacted_index), ("f", velocity)])


def step_message(area_index: int, step_index: int, is_redacted: bool, namespace: str = NAMESPACE) -> bytes:
    return encode(step_address(namespace), [("i", area_index), ("i", step_index), ("i", 1 if is_redacted else 0)])
