"""Encoding of Python values into the Erlang external term format."""

from __future__ import annotations

import dataclasses
import struct
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional

from erlterm.cache import AtomCache, CacheItem, ListAtomCache
from erlterm.types import (
    Atom,
    BinaryString,
    Charlist,
    ImproperList,
    Marshaler,
    Pid,
    Ref,
    Tag,
)

_U16 = struct.Struct(">H")
_U32 = struct.Struct(">I")
_I32 = struct.Struct(">i")
_F64 = struct.Struct(">d")

_MAX_STRING_BYTES = 65535
_MAX_ATOM_CHARS = 255
_MAX_CACHE_REFS = 256
_PID_ID_MASK = 32767  # 15 bits
_PID_SERIAL_MASK = 8191  # 13 bits
_REF_FIRST_ID_MASK = 262143  # 18 bits
_REF_ID_WORDS = 3
_U32_MASK = 0xFFFFFFFF
_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1


class EncodeError(ValueError):
    """Raised when a value cannot be encoded."""


class StringTooLongError(EncodeError):
    """Raised for a string longer than 65535 bytes."""

    def __init__(self) -> None:
        super().__init__("string too long; at most 65535 bytes are allowed")


class AtomTooLongError(EncodeError):
    """Raised for an atom of more than 255 characters."""

    def __init__(self) -> None:
        super().__init__("atom too long; at most 255 UTF-8 characters are allowed")


@dataclass
class EncodeOptions:
    """Atom caches and distribution flags used while encoding.

    The atom cache is used only when ``link_atom_cache`` is given: atoms
    found in ``writer_atom_cache`` are written as cache references and
    collected in ``encoding_atom_cache``; other atoms are added to the
    link cache and written in full.
    """

    link_atom_cache: Optional[AtomCache] = None
    writer_atom_cache: Optional[dict] = None
    encoding_atom_cache: Optional[ListAtomCache] = None
    flag_v4nc: bool = False
    flag_big_creation: bool = False


def _text_bytes(text: str) -> bytes:
    return text.encode("utf-8", errors="surrogateescape")


class _Encoder:
    def __init__(self, options: EncodeOptions) -> None:
        self.options = options
        self.out = bytearray()
        cache = options.encoding_atom_cache
        self.cache_index = len(cache) if cache is not None else 0

    def term(self, value: Any) -> None:
        if value is None:
            self.out.append(Tag.NIL)
        elif isinstance(value, bool):
            self.boolean(value)
        elif isinstance(value, int):
            self.integer(value)
        elif isinstance(value, float):
            self.out.append(Tag.NEW_FLOAT)
            self.out += _F64.pack(value)
        elif isinstance(value, Atom):
            self.atom(value)
        elif isinstance(value, BinaryString):
            self.binary(_text_bytes(value))
        elif isinstance(value, Charlist):
            self.list_([ord(char) for char in value])
        elif isinstance(value, str):
            self.string(value)
        elif isinstance(value, (bytes, bytearray, memoryview)):
            self.binary(bytes(value))
        elif isinstance(value, Marshaler):
            self.binary(bytes(value.marshal_etf()))
        elif isinstance(value, Pid):
            self.pid(value)
        elif isinstance(value, Ref):
            self.ref(value)
        elif isinstance(value, ImproperList):
            self.improper_list(value)
        elif isinstance(value, list):
            self.list_(value)
        elif isinstance(value, tuple):
            self.tuple_(value)
        elif isinstance(value, Mapping):
            self.map_(value.items())
        elif dataclasses.is_dataclass(value) and not isinstance(value, type):
            self.record(value)
        else:
            raise EncodeError(
                f"unsupported type {type(value).__name__} with value {value!r}"
            )

    # atoms

    def cached(self, atom: Atom) -> bool:
        options = self.options
        if options.link_atom_cache is None or self.cache_index >= _MAX_CACHE_REFS:
            return False
        item: Optional[CacheItem] = (options.writer_atom_cache or {}).get(atom)
        if item is None:
            options.link_atom_cache.append(atom)
            return False
        if options.encoding_atom_cache is None:
            raise EncodeError("no encoding atom cache to record cache references")
        options.encoding_atom_cache.append(item)
        self.out += bytes((Tag.CACHE_REF, self.cache_index))
        self.cache_index += 1
        return True

    def boolean(self, value: bool) -> None:
        if self.cached(Atom("true" if value else "false")):
            return
        name = b"true" if value else b"false"
        self.out += bytes((Tag.SMALL_ATOM, len(name)))
        self.out += name

    def atom(self, atom: Atom) -> None:
        if self.cached(atom):
            return
        if len(atom) > _MAX_ATOM_CHARS:
            raise AtomTooLongError()
        raw = _text_bytes(atom)
        if len(raw) < 256:
            self.out += bytes((Tag.SMALL_ATOM_UTF8, len(raw)))
        else:
            self.out.append(Tag.ATOM_UTF8)
            self.out += _U16.pack(len(raw))
        self.out += raw

    # scalars

    def integer(self, value: int) -> None:
        if 0 <= value <= 255:
            self.out += bytes((Tag.SMALL_INTEGER, value))
            return
        if _INT32_MIN <= value <= _INT32_MAX:
            self.out.append(Tag.INTEGER)
            self.out += _I32.pack(value)
            return
        magnitude = abs(value)
        size = (magnitude.bit_length() + 7) // 8
        sign = 1 if value < 0 else 0
        if size < 256:
            self.out += bytes((Tag.SMALL_BIG, size, sign))
        else:
            self.out.append(Tag.LARGE_BIG)
            self.out += _U32.pack(size)
            self.out.append(sign)
        self.out += magnitude.to_bytes(size, "little")

    def string(self, text: str) -> None:
        raw = _text_bytes(text)
        if len(raw) > _MAX_STRING_BYTES:
            raise StringTooLongError()
        self.out.append(Tag.STRING)
        self.out += _U16.pack(len(raw))
        self.out += raw

    def binary(self, data: bytes) -> None:
        self.out.append(Tag.BINARY)
        self.out += _U32.pack(len(data))
        self.out += data

    # containers

    def list_(self, items: list) -> None:
        if not items:
            self.out.append(Tag.NIL)
            return
        self.out.append(Tag.LIST)
        self.out += _U32.pack(len(items))
        for item in items:
            self.term(item)
        self.out.append(Tag.NIL)

    def improper_list(self, items: ImproperList) -> None:
        if not items:
            self.out.append(Tag.NIL)
            return
        self.out.append(Tag.LIST)
        self.out += _U32.pack(len(items) - 1)
        for item in items:
            self.term(item)

    def tuple_(self, items: tuple) -> None:
        if len(items) < 256:
            self.out += bytes((Tag.SMALL_TUPLE, len(items)))
        else:
            self.out.append(Tag.LARGE_TUPLE)
            self.out += _U32.pack(len(items))
        for item in items:
            self.term(item)

    def map_(self, pairs: Any) -> None:
        pairs = list(pairs)
        self.out.append(Tag.MAP)
        self.out += _U32.pack(len(pairs))
        for key, value in pairs:
            self.term(key)
            self.term(value)

    def record(self, value: Any) -> None:
        pairs = [
            (Atom(item.metadata.get("etf") or item.name), getattr(value, item.name))
            for item in dataclasses.fields(value)
        ]
        self.map_(pairs)

    # identifiers

    def pid(self, pid: Pid) -> None:
        big = self.options.flag_big_creation
        v4nc = self.options.flag_v4nc
        self.out.append(Tag.NEW_PID if big else Tag.PID)
        self.term(pid.node)
        if v4nc:
            raw_id = pid.id & _U32_MASK
            serial = (pid.id >> 32) & _U32_MASK
        else:
            raw_id = pid.id & _PID_ID_MASK
            shift = 32 if big else 15
            serial = (pid.id >> shift) & _PID_SERIAL_MASK
        self.out += _U32.pack(raw_id)
        self.out += _U32.pack(serial)
        if big:
            self.out += _U32.pack(pid.creation & _U32_MASK)
        else:
            self.out.append(pid.creation & 3)

    def ref(self, ref: Ref) -> None:
        big = self.options.flag_big_creation
        self.out.append(Tag.NEWER_REF if big else Tag.NEW_REF)
        self.out += _U16.pack(_REF_ID_WORDS)
        self.term(ref.node)
        ids = list(ref.id[:_REF_ID_WORDS])
        if big:
            self.out += _U32.pack(ref.creation & _U32_MASK)
        else:
            self.out.append(ref.creation & 3)
            ids[0] &= _REF_FIRST_ID_MASK
        for word in ids:
            self.out += _U32.pack(word & _U32_MASK)


def encode(term: Any, options: Optional[EncodeOptions] = None) -> bytes:
    """Encode ``term`` and return its external term format bytes.

    Raises EncodeError (or one of its subclasses) if the value cannot be
    encoded.
    """
    encoder = _Encoder(options or EncodeOptions())
    try:
        encoder.term(term)
    except RecursionError as exc:
        raise EncodeError("nesting too deep") from exc
    except struct.error as exc:
        raise EncodeError(str(exc)) from exc
    return bytes(encoder.out)