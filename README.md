# erlterm

`erlterm` reads and writes the Erlang External Term Format (ETF), the binary
encoding Erlang nodes use for distribution messages and `term_to_binary/1`.
It has no dependencies outside the standard library.

## Installation

```
pip install erlterm
```

## Term types

Erlang values map onto Python values and a few small types from
`erlterm.types`:

| Erlang                | Python                                              |
|-----------------------|-----------------------------------------------------|
| atom                  | `Atom` (`true`/`false` decode to `bool`)            |
| integer, big integer  | `int`                                               |
| float                 | `float`                                             |
| string (`"..."`)      | `str`                                               |
| binary                | `bytes`; `BinaryString` encodes a text as a binary  |
| list                  | `list`; `Charlist` encodes text as code points      |
| improper list         | `ImproperList` (the last element is the tail)       |
| tuple                 | `tuple`                                             |
| map                   | `dict`                                              |
| pid, port, reference  | `Pid`, `Port`, `Ref` / `Alias`                      |
| fun, export           | `Function`, `Export`                                |

`Atom`, `BinaryString` and `Charlist` are `str` subclasses that compare equal
only to values of their own type, so `Atom("ok") != "ok"`.

`str(pid)` gives an Erlang-style form `<N.Serial.Id>`, where `N` is a hash of
the node name (`<0.0.0>` for an empty pid); `str(ref)` gives `Ref#<N.A.B.C>`.
A `Ref` always holds five id words; shorter tuples are padded with zeros.

`term_to_string` returns the text of an atom, string, binary or charlist
(or `None`), and `charlist_to_string` turns a list of code points into a
string, raising `ValueError` on non-integer elements.

## Encoding and decoding

```python
from erlterm.types import Atom, Pid
from erlterm.encode import encode, EncodeOptions
from erlterm.decode import decode, DecodeOptions

pid = Pid(node=Atom("demo@127.0.0.1"), id=142, creation=2)
data = encode((Atom("hello"), [1, 2, 3], pid), EncodeOptions())

term, rest = decode(data, [], DecodeOptions())
```

Both option arguments may be left out. `decode` returns the term and whatever
bytes follow it; malformed input raises `MalformedETFError` (a `ValueError`).

`encode` returns `bytes`. Besides the types above it writes `None` as the
empty list, any `Mapping` as a map, and a dataclass instance as a map from
field-name atoms to values (a field's `metadata={"etf": "name"}` renames its
key). Values of type `Marshaler` are written as a binary holding the result
of their `marshal_etf()`. Unsupported values raise `EncodeError`; strings over
65535 bytes raise `StringTooLongError` and atoms over 255 characters raise
`AtomTooLongError`, both subclasses of `EncodeError`.

The option flags follow the distribution protocol: `flag_big_creation`
selects the `NEW_PID_EXT` / `NEWER_REFERENCE_EXT` forms, and `flag_v4nc`
allows full 32-bit pid ids and serials (and, when decoding, references of up
to five words).

## Atom cache

`erlterm.cache.AtomCache` is a thread-safe table that gives each new atom the
next id, up to 2048 atoms; `last_id()`, `list()` and `list_since(start)` read
it back. `CacheItem` describes one cached atom, and `ListAtomCache` collects
the cache references used while encoding one message.

When `EncodeOptions.link_atom_cache` is set, atoms found in
`writer_atom_cache` (a dict from `Atom` to `CacheItem`) are written as cache
references and appended to `encoding_atom_cache`; other atoms are added to the
link cache and written in full. To decode cache references, pass the list of
cached atoms as the `cache` argument of `decode`.

## What is not included

The package works on terms and bytes only. It does not connect to Erlang
nodes, perform the distribution handshake, or frame messages. It also has no
helper that fills dataclasses from decoded terms: `Unmarshaler` is only an
interface, and decoded binaries are returned as `bytes` for the caller to pass
to `unmarshal_etf` themselves.

## Running the tests

```
pip install -e ".[test]"
pytest
```