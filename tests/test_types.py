import pytest

from erlterm.types import (
    Alias,
    Atom,
    BinaryString,
    Charlist,
    Export,
    Function,
    ImproperList,
    Marshaler,
    Pid,
    Port,
    ProplistElement,
    Ref,
    Unmarshaler,
    charlist_to_string,
    term_to_string,
)


def test_charlist_to_string_unicode():
    chars = [72, 101, 108, 108, 111, 32, 87, 111, 114, 108, 100, 33, 32, 20320,
             22909, 19990, 30028, 33, 32, 1055, 1088, 1080, 1074, 1077, 1090, 32,
             1052, 1080, 1088, 33, 32, 128640]
    assert charlist_to_string(chars) == "Hello World! 你好世界! Привет Мир! 🚀"


def test_charlist_to_string_rejects_non_int():
    with pytest.raises(ValueError):
        charlist_to_string([72, "x"])


def test_charlist_to_string_rejects_bool():
    with pytest.raises(ValueError):
        charlist_to_string([True])


def test_charlist_to_string_invalid_rune_replaced():
    assert charlist_to_string([0xD800, 65]) == "\ufffdA"


def test_atom_differs_from_str():
    assert Atom("abc") != "abc"
    assert Atom("abc") == Atom("abc")
    mapping = {Atom("abc"): 123, "abc": 4.56}
    assert len(mapping) == 2
    assert mapping[Atom("abc")] == 123
    assert mapping["abc"] == 4.56


def test_string_kinds_are_distinct():
    assert Charlist("x") != BinaryString("x")
    assert BinaryString("x") == BinaryString("x")
    assert str(Charlist("x")) == "x"


def test_improper_list_differs_from_list():
    items = ImproperList([1, 2])
    assert list(items) == [1, 2]
    assert items == ImproperList([1, 2])
    assert items != [1, 2]


def test_pid_empty_str():
    assert str(Pid()) == "<0.0.0>"


def test_pid_str_with_node():
    assert str(Pid(node="a", id=5)) == "<E40C292C.0.5>"


def test_pid_str_high_and_negative_parts():
    pid = Pid(node="a", id=(1 << 32) | 0xFFFFFFFF)
    assert str(pid) == "<E40C292C.1.-1>"


def test_pid_node_coerced_to_atom():
    pid = Pid(node="erl-demo@127.0.0.1", id=142, creation=2)
    assert pid.node == Atom("erl-demo@127.0.0.1")
    assert pid == Pid(Atom("erl-demo@127.0.0.1"), 142, 2)
    assert hash(pid) == hash(Pid(Atom("erl-demo@127.0.0.1"), 142, 2))


def test_ref_pads_ids():
    ref = Ref(node="n", creation=2, id=(73444, 3082813441, 2373634851))
    assert ref.id == (73444, 3082813441, 2373634851, 0, 0)


def test_ref_rejects_too_many_ids():
    with pytest.raises(ValueError):
        Ref(node="n", id=(1, 2, 3, 4, 5, 6))


def test_ref_str():
    assert str(Ref(node="a", creation=1, id=(1, 2, 3))) == "Ref#<E40C292C.1.2.3>"
    assert str(Ref(creation=1, id=(1, 2, 3))) == "Ref#<0.1.2.3>"


def test_alias_str_and_distinct_from_ref():
    alias = Alias(node="a", creation=1, id=(1, 2, 3))
    assert str(alias) == "Ref#<E40C292C.1.2.3>"
    assert alias != Ref(node="a", creation=1, id=(1, 2, 3))


def test_port_fields():
    port = Port(node="erl-demo@127.0.0.1", id=32, creation=2)
    assert port.node == Atom("erl-demo@127.0.0.1")
    assert (port.id, port.creation) == (32, 2)


def test_export_and_function():
    assert Export(Atom("m"), Atom("f"), 1) == Export(Atom("m"), Atom("f"), 1)
    fun = Function(arity=1, module=Atom("erl_eval"))
    assert fun.unique == bytes(16)
    assert fun.free_vars == []
    assert fun.pid == Pid()


def test_proplist_element():
    element = ProplistElement(Atom("a"), [1, 2])
    assert element.name == Atom("a")
    assert element.value == [1, 2]


@pytest.mark.parametrize(
    "term, expected",
    [
        (Atom("abc"), "abc"),
        ("abc", "abc"),
        (b"abc", "abc"),
        ([97, 98, 99], "abc"),
        ([97, "b"], None),
        ((97, 98), None),
        (BinaryString("abc"), None),
        (42, None),
    ],
)
def test_term_to_string(term, expected):
    assert term_to_string(term) == expected


def test_marshaler_is_abstract():
    with pytest.raises(TypeError):
        Marshaler()


def test_marshaler_and_unmarshaler_subclass():
    class Stamp(Marshaler, Unmarshaler):
        def __init__(self, text):
            self.text = text

        def marshal_etf(self):
            return self.text.encode()

        @classmethod
        def unmarshal_etf(cls, data):
            return cls(data.decode())

    stamp = Stamp("2021-01-01T00:00:00Z")
    encoded = stamp.marshal_etf()
    assert term_to_string(encoded) == "2021-01-01T00:00:00Z"
    restored = Stamp.unmarshal_etf(encoded)
    assert restored.text == "2021-01-01T00:00:00Z"