"""Decoding of the Erlang external term format."""

from __future__ import annotations

import re
import struct
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from erlterm.types import (
    Atom,
    Export,
    Function,
    ImproperList,
    Pid,
    Port,
    Ref,
    Tag,
)

_U16 = struct.Struct(">H")
_U32 = struct.Struct(">I")
_I32 = struct.Struct(">i")
_F64 = struct.Struct(">d")

_MAX_ATOM_CHARS = 255
_PID_ID_MASK = 32767  # 15 bits
_PID_SERIAL_MASK = 8191  # 13 bits
_REF_FIRST_ID_MASK = 262143  # 18 bits
_MAX_REF_LEN = 5
_MAX_REF_LEN_LEGACY = 3
_LEGACY_FLOAT_SIZE = 31
_NEW_FUN_HEADER = 29
_NEW_FUN_MIN = 32
_LARGE_BIG_MIN = 256

_FLOAT_PREFIX = re.compile(rb"\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)")


class MalformedETFError(ValueError):
    """Raised when a packet is not a valid external term."""

    def __init__(self, what: Optional[str] = None) -> None:
        self.what = what
        message = "malformed ETF" if what is None else f"malformed ETF: {what}"
        super().__init__(message)


@dataclass(frozen=True)
class DecodeOptions:
    """Distribution flags that change how pids and references are read."""

    flag_v4nc: bool = False
    flag_big_creation: bool = False


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _bool_or_atom(atom: Atom) -> Any:
    if atom == Atom("true"):
        return True
    if atom == Atom("false"):
        return False
    return atom


def _text(raw: bytes) -> str:
    return raw.decode("utf-8", errors="surrogateescape")


class _Decoder:
    def __init__(
        self, data: bytes, cache: Sequence[Optional[str]], options: DecodeOptions
    ) -> None:
        self.data = data
        self.pos = 0
        self.cache = cache
        self.options = options

    def remaining(self) -> int:
        return len(self.data) - self.pos

    def take(self, size: int, what: str) -> bytes:
        if size < 0 or self.remaining() < size:
            raise MalformedETFError(what)
        chunk = self.data[self.pos : self.pos + size]
        self.pos += size
        return chunk

    def u8(self, what: str) -> int:
        return self.take(1, what)[0]

    def u16(self, what: str) -> int:
        return _U16.unpack(self.take(2, what))[0]

    def u32(self, what: str) -> int:
        return _U32.unpack(self.take(4, what))[0]

    def term(self) -> Any:
        if self.remaining() == 0:
            raise MalformedETFError()
        tag = self.data[self.pos]
        self.pos += 1
        if tag == Tag.NIL:
            return []
        handler = _DISPATCH.get(tag)
        if handler is None:
            raise MalformedETFError("unknown type")
        return handler(self, tag)

    def node_atom(self, what: str) -> Atom:
        node = self.term()
        if type(node) is not Atom:
            raise MalformedETFError(what)
        return node

    # basic types

    def atom(self, tag: int) -> Any:
        what = "ATOM_UTF8"
        size = self.u16(what)
        name = self.take(size, what).decode("utf-8", errors="replace")
        if len(name) > _MAX_ATOM_CHARS:
            raise MalformedETFError(what)
        return Atom(name)

    def small_atom(self, tag: int) -> Any:
        what = "SMALL_ATOM_UTF8"
        size = self.u8(what)
        name = self.take(size, what).decode("utf-8", errors="replace")
        return _bool_or_atom(Atom(name))

    def string(self, tag: int) -> Any:
        what = "STRING"
        size = self.u16(what)
        return _text(self.take(size, what))

    def cache_ref(self, tag: int) -> Any:
        what = "CACHE_REF"
        index = self.u8(what)
        if index >= len(self.cache) or self.cache[index] is None:
            raise MalformedETFError(what)
        return _bool_or_atom(Atom(self.cache[index]))

    def new_float(self, tag: int) -> Any:
        return _F64.unpack(self.take(8, "NEW_FLOAT"))[0]

    def legacy_float(self, tag: int) -> Any:
        what = "FLOAT"
        raw = self.take(_LEGACY_FLOAT_SIZE, what)
        match = _FLOAT_PREFIX.match(raw)
        if match is None:
            raise MalformedETFError(what)
        return float(match.group(1))

    def small_integer(self, tag: int) -> Any:
        return self.u8("SMALL_INTEGER")

    def integer(self, tag: int) -> Any:
        return _I32.unpack(self.take(4, "INTEGER"))[0]

    def _big(self, size: int, what: str) -> int:
        negative = self.u8(what) == 1
        value = int.from_bytes(self.take(size, what), "little")
        return -value if negative else value

    def small_big(self, tag: int) -> Any:
        what = "SMALL_BIG"
        size = self.u8(what)
        return self._big(size, what)

    def large_big(self, tag: int) -> Any:
        what = "LARGE_BIG"
        if self.remaining() < _LARGE_BIG_MIN:
            raise MalformedETFError(what)
        size = self.u32(what)
        return self._big(size, what)

    def binary(self, tag: int) -> Any:
        what = "BINARY"
        size = self.u32(what)
        return self.take(size, what)

    def bit_binary(self, tag: int) -> Any:
        what = "BIT_BINARY"
        if self.remaining() < 6:
            raise MalformedETFError(what)
        size = self.u32(what)
        bits = self.u8(what)
        if size == 0:
            raise MalformedETFError(what)
        data = bytearray(self.take(size, what))
        shift = 8 - bits
        data[-1] = data[-1] >> shift if 0 <= shift < 8 else 0
        return bytes(data)

    # containers

    def list_(self, tag: int) -> Any:
        what = "LIST"
        count = self.u32(what)
        if count == 0:
            raise MalformedETFError(what)
        items = [self.term() for _ in range(count)]
        tail = self.term()
        if type(tail) is list and not tail:
            return items
        items.append(tail)
        return ImproperList(items)

    def small_tuple(self, tag: int) -> Any:
        count = self.u8("SMALL_TUPLE")
        return tuple(self.term() for _ in range(count))

    def large_tuple(self, tag: int) -> Any:
        count = self.u32("LARGE_TUPLE")
        return tuple(self.term() for _ in range(count))

    def map_(self, tag: int) -> Any:
        count = self.u32("MAP")
        result: dict = {}
        for _ in range(count):
            key = self.term()
            value = self.term()
            try:
                result[key] = value
            except TypeError as exc:
                raise MalformedETFError(f"unhashable map key {key!r}") from exc
        return result

    # identifiers

    def _pid_id(self, raw_id: int, serial: int) -> int:
        if self.options.flag_v4nc:
            return raw_id | (serial << 32)
        return (raw_id & _PID_ID_MASK) | ((serial & _PID_SERIAL_MASK) << 15)

    def pid(self, tag: int) -> Any:
        what = "PID"
        node = self.term()
        if self.remaining() < 9:
            raise MalformedETFError(what)
        if type(node) is not Atom:
            raise MalformedETFError(what)
        raw_id = self.u32(what)
        serial = self.u32(what)
        creation = self.u8(what) & 3
        return Pid(node=node, id=self._pid_id(raw_id, serial), creation=creation)

    def new_pid(self, tag: int) -> Any:
        node = self.term()
        if self.remaining() < 12:
            raise MalformedETFError("NEW_PID")
        if type(node) is not Atom:
            raise MalformedETFError("PID")
        raw_id = self.u32("NEW_PID")
        serial = self.u32("NEW_PID")
        creation = self.u32("NEW_PID")
        return Pid(node=node, id=self._pid_id(raw_id, serial), creation=creation)

    def ref(self, tag: int) -> Any:
        what = "NEW_REF"
        length = self.u16(what)
        node = self.node_atom(what)
        if length > _MAX_REF_LEN:
            raise MalformedETFError(what)
        if length > _MAX_REF_LEN_LEGACY and not self.options.flag_v4nc:
            raise MalformedETFError(what)
        if tag == Tag.NEW_REF:
            if self.remaining() < 1 + length * 4:
                raise MalformedETFError(what)
            creation = self.u8(what)
        else:
            if self.remaining() < 4 + length * 4:
                raise MalformedETFError(what)
            creation = self.u32(what)
        ids = [self.u32(what) for _ in range(length)]
        if ids:
            ids[0] &= _REF_FIRST_ID_MASK
        return Ref(node=node, creation=creation, id=tuple(ids))

    def port(self, tag: int) -> Any:
        what = "PORT"
        node = self.term()
        if self.remaining() < 5:
            raise MalformedETFError(what)
        if type(node) is not Atom:
            raise MalformedETFError(what)
        port_id = self.u32(what)
        return Port(node=node, id=port_id, creation=self.u8(what))

    def new_port(self, tag: int) -> Any:
        what = "NEW_PORT"
        node = self.term()
        if self.remaining() < 8:
            raise MalformedETFError(what)
        if type(node) is not Atom:
            raise MalformedETFError(what)
        port_id = self.u32(what)
        return Port(node=node, id=port_id, creation=self.u32(what))

    # functions

    def export(self, tag: int) -> Any:
        what = "EXPORT"
        module = self.term()
        if type(module) is not Atom:
            raise MalformedETFError(what)
        function = self.term()
        if type(function) is not Atom:
            raise MalformedETFError(what)
        arity = self.term()
        if not _is_int(arity):
            raise MalformedETFError(what)
        return Export(module=module, function=function, arity=arity)

    def new_fun(self, tag: int) -> Any:
        what = "NEW_FUN"
        if self.remaining() < _NEW_FUN_MIN:
            raise MalformedETFError(what)
        header = self.take(_NEW_FUN_HEADER, what)
        arity = header[4]
        unique = bytes(header[5:21])
        index = _U32.unpack(header[21:25])[0]
        free_count = _U32.unpack(header[25:29])[0]

        module = self.term()
        if type(module) is not Atom:
            raise MalformedETFError(what)
        old_index = self.term()
        if not _is_int(old_index):
            raise MalformedETFError(what)
        old_unique = self.term()
        if not _is_int(old_unique):
            raise MalformedETFError(what)
        pid = self.term()
        if not isinstance(pid, Pid):
            raise MalformedETFError(what)
        free_vars = [self.term() for _ in range(free_count)]
        return Function(
            arity=arity,
            unique=unique,
            index=index,
            module=module,
            old_index=old_index & 0xFFFFFFFF,
            old_unique=old_unique & 0xFFFFFFFF,
            pid=pid,
            free_vars=free_vars,
        )


_DISPATCH: dict[int, Callable[[_Decoder, int], Any]] = {
    Tag.ATOM_UTF8: _Decoder.atom,
    Tag.ATOM: _Decoder.atom,
    Tag.SMALL_ATOM_UTF8: _Decoder.small_atom,
    Tag.SMALL_ATOM: _Decoder.small_atom,
    Tag.STRING: _Decoder.string,
    Tag.CACHE_REF: _Decoder.cache_ref,
    Tag.NEW_FLOAT: _Decoder.new_float,
    Tag.FLOAT: _Decoder.legacy_float,
    Tag.SMALL_INTEGER: _Decoder.small_integer,
    Tag.INTEGER: _Decoder.integer,
    Tag.SMALL_BIG: _Decoder.small_big,
    Tag.LARGE_BIG: _Decoder.large_big,
    Tag.LIST: _Decoder.list_,
    Tag.SMALL_TUPLE: _Decoder.small_tuple,
    Tag.LARGE_TUPLE: _Decoder.large_tuple,
    Tag.MAP: _Decoder.map_,
    Tag.BINARY: _Decoder.binary,
    Tag.BIT_BINARY: _Decoder.bit_binary,
    Tag.PID: _Decoder.pid,
    Tag.NEW_PID: _Decoder.new_pid,
    Tag.NEW_REF: _Decoder.ref,
    Tag.NEWER_REF: _Decoder.ref,
    Tag.PORT: _Decoder.port,
    Tag.NEW_PORT: _Decoder.new_port,
    Tag.EXPORT: _Decoder.export,
    Tag.NEW_FUN: _Decoder.new_fun,
}


def decode(
    packet: bytes,
    cache: Optional[Sequence[Optional[str]]] = None,
    options: Optional[DecodeOptions] = None,
) -> tuple[Any, bytes]:
    """Decode one term from ``packet``.

    ``cache`` holds the atoms that CACHE_REF entries point to. Returns the
    term and the bytes left after it; raises MalformedETFError on bad input.
    """
    decoder = _Decoder(bytes(packet), cache or (), options or DecodeOptions())
    try:
        term = decoder.term()
    except RecursionError as exc:
        raise MalformedETFError("nesting too deep") from exc
    return term, decoder.data[decoder.pos :]