"""Erlang term types and helpers for the external term format."""

from __future__ import annotations

import abc
import enum
from dataclasses import dataclass, field
from typing import Any, Optional

_FNV32_OFFSET = 0x811C9DC5
_FNV32_PRIME = 0x01000193
_MAX_REF_IDS = 5


class Tag(enum.IntEnum):
    """Erlang external term format tags."""

    ATOM = 100  # deprecated
    ATOM_UTF8 = 118
    SMALL_ATOM = 115  # deprecated
    SMALL_ATOM_UTF8 = 119
    STRING = 107
    CACHE_REF = 82
    NEW_FLOAT = 70
    SMALL_INTEGER = 97
    INTEGER = 98
    LARGE_BIG = 111
    SMALL_BIG = 110
    LIST = 108
    LIST_IMPROPER = 18  # internal marker for improper lists such as [a|b]
    SMALL_TUPLE = 104
    LARGE_TUPLE = 105
    MAP = 116
    BINARY = 109
    BIT_BINARY = 77
    NIL = 106
    PID = 103
    NEW_PID = 88  # since OTP 23, with the BIG_CREATION flag
    NEW_REF = 114
    NEWER_REF = 90  # since OTP 21, with the BIG_CREATION flag
    EXPORT = 113
    FUN = 117  # legacy, unsupported
    NEW_FUN = 112
    PORT = 102
    NEW_PORT = 89  # since OTP 23, with the BIG_CREATION flag
    FLOAT = 99  # legacy


class _TypedStr(str):
    """A string that only compares equal to strings of its own kind."""

    __slots__ = ()

    def __eq__(self, other: object) -> bool:
        return type(other) is type(self) and str.__eq__(self, other)

    def __ne__(self, other: object) -> bool:
        return not self.__eq__(other)

    def __hash__(self) -> int:
        return hash((type(self).__name__, str(self)))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str.__repr__(self)})"


class Atom(_TypedStr):
    """An Erlang atom."""

    __slots__ = ()


class BinaryString(_TypedStr):
    """A string that is encoded as an Erlang binary (<<...>>)."""

    __slots__ = ()


class Charlist(_TypedStr):
    """A string that is encoded as an Erlang list of code points ([...])."""

    __slots__ = ()


class ImproperList(list):
    """An improper Erlang list such as [a|b]; the last element is the tail."""

    def __eq__(self, other: object) -> bool:
        return type(other) is type(self) and list.__eq__(self, other)

    def __ne__(self, other: object) -> bool:
        return not self.__eq__(other)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"ImproperList({list.__repr__(self)})"


def _fnv1a32(data: bytes) -> int:
    value = _FNV32_OFFSET
    for byte in data:
        value ^= byte
        value = (value * _FNV32_PRIME) & 0xFFFFFFFF
    return value


def _node_hash(node: str) -> int:
    return _fnv1a32(node.encode("utf-8")) if node else 0


def _int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


@dataclass(frozen=True)
class Pid:
    """An Erlang process identifier."""

    node: Atom = Atom("")
    id: int = 0
    creation: int = 0

    def __post_init__(self) -> None:
        if type(self.node) is not Atom:
            object.__setattr__(self, "node", Atom(self.node))

    def __str__(self) -> str:
        if self == Pid():
            return "<0.0.0>"
        n = _node_hash(self.node)
        return f"<{n:X}.{_int32(self.id >> 32)}.{_int32(self.id)}>"


@dataclass(frozen=True)
class Port:
    """An Erlang port identifier."""

    node: Atom = Atom("")
    id: int = 0
    creation: int = 0

    def __post_init__(self) -> None:
        if type(self.node) is not Atom:
            object.__setattr__(self, "node", Atom(self.node))


@dataclass(frozen=True)
class Ref:
    """An Erlang reference; ``id`` always holds five words."""

    node: Atom = Atom("")
    creation: int = 0
    id: tuple = (0, 0, 0, 0, 0)

    def __post_init__(self) -> None:
        if type(self.node) is not Atom:
            object.__setattr__(self, "node", Atom(self.node))
        ids = tuple(self.id)
        if len(ids) > _MAX_REF_IDS:
            raise ValueError(f"reference id holds at most {_MAX_REF_IDS} words")
        object.__setattr__(self, "id", ids + (0,) * (_MAX_REF_IDS - len(ids)))

    def __str__(self) -> str:
        n = _node_hash(self.node)
        return f"Ref#<{n:X}.{self.id[0]}.{self.id[1]}.{self.id[2]}>"


@dataclass(frozen=True)
class Alias(Ref):
    """A process alias; encoded the same way as a reference."""


@dataclass
class Function:
    """An Erlang fun (NEW_FUN_EXT)."""

    arity: int = 0
    unique: bytes = bytes(16)
    index: int = 0
    module: Atom = Atom("")
    old_index: int = 0
    old_unique: int = 0
    pid: Pid = field(default_factory=Pid)
    free_vars: list = field(default_factory=list)


@dataclass(frozen=True)
class Export:
    """An Erlang external fun: fun Module:Function/Arity."""

    module: Atom = Atom("")
    function: Atom = Atom("")
    arity: int = 0


@dataclass
class ProplistElement:
    """One {Name, Value} entry of a property list."""

    name: Any
    value: Any


class Marshaler(abc.ABC):
    """A value that encodes itself into the binary of an Erlang term."""

    @abc.abstractmethod
    def marshal_etf(self) -> bytes:
        """Return the binary representation of this value."""


class Unmarshaler(abc.ABC):
    """A type that can build an instance of itself from a binary."""

    @classmethod
    @abc.abstractmethod
    def unmarshal_etf(cls, data: bytes) -> "Unmarshaler":
        """Build an instance from the given binary."""


def charlist_to_string(chars: list) -> str:
    """Turn a list of integer code points into a string.

    Raises ValueError if an element is not an integer.
    """
    out = []
    for char in chars:
        if isinstance(char, bool) or not isinstance(char, int):
            raise ValueError(f"wrong rune {char!r}")
        code = _int32(char)
        if code < 0 or code > 0x10FFFF or 0xD800 <= code <= 0xDFFF:
            out.append("\ufffd")
        else:
            out.append(chr(code))
    return "".join(out)


def term_to_string(term: Any) -> Optional[str]:
    """Return the string an atom, string, binary or charlist stands for.

    Returns None if the term cannot be read as a string.
    """
    if type(term) is Atom or type(term) is str:
        return str(term)
    if isinstance(term, (bytes, bytearray)):
        return bytes(term).decode("utf-8", errors="replace")
    if type(term) is list:
        try:
            return charlist_to_string(term)
        except ValueError:
            return None
    return None