from erlterm.cache import MAX_CACHE_ITEMS, AtomCache, CacheItem, ListAtomCache
from erlterm.types import Atom


def test_atom_cache_ids():
    cache = AtomCache()
    assert cache.last_id() == -1
    cache.append(Atom("test1"))
    assert cache.last_id() == 0
    cache.append(Atom("test1"))
    assert cache.last_id() == 0
    cache.append(Atom("test2"))
    assert cache.last_id() == 1


def test_atom_cache_list_since():
    cache = AtomCache()
    cache.append(Atom("test1"))
    cache.append(Atom("test2"))
    result = cache.list_since(0)
    assert result != [Atom("test1"), Atom("test2")]
    assert len(result) == MAX_CACHE_ITEMS
    assert result[:2] == [Atom("test1"), Atom("test2")]
    assert cache.list_since(1)[0] == Atom("test2")


def test_atom_cache_list():
    cache = AtomCache()
    cache.append("test1")
    cache.append("test2")
    expected = [None] * MAX_CACHE_ITEMS
    expected[0] = Atom("test1")
    expected[1] = Atom("test2")
    assert cache.list() == expected


def test_atom_cache_list_is_copy():
    cache = AtomCache()
    cache.append("a")
    snapshot = cache.list()
    snapshot[0] = None
    assert cache.list()[0] == Atom("a")


def test_atom_cache_capacity():
    cache = AtomCache()
    for i in range(MAX_CACHE_ITEMS + 10):
        cache.append(Atom(f"atom{i}"))
    assert cache.last_id() == MAX_CACHE_ITEMS - 1
    assert cache.list()[-1] == Atom(f"atom{MAX_CACHE_ITEMS - 1}")


def test_list_atom_cache_append_and_len():
    items = ListAtomCache()
    items.append(CacheItem(0, True, Atom("a")))
    items.append(CacheItem(1, False, Atom("b")))
    assert len(items) == 2
    assert [item.name for item in items] == [Atom("a"), Atom("b")]
    assert items.has_long_atom is False


def test_list_atom_cache_long_atom():
    items = ListAtomCache()
    items.append(CacheItem(0, True, Atom("x" * 300)))
    assert items.has_long_atom is False
    items.append(CacheItem(1, False, Atom("x" * 256)))
    assert items.has_long_atom is True


def test_list_atom_cache_long_atom_counts_bytes():
    items = ListAtomCache()
    items.append(CacheItem(0, False, Atom("я" * 200)))
    assert items.has_long_atom is True


def test_list_atom_cache_reset():
    items = ListAtomCache()
    items.append(CacheItem(0, False, Atom("x" * 256)))
    items.reset()
    assert len(items) == 0
    assert items.has_long_atom is False