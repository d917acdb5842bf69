"""Encoding and decoding of the Erlang External Term Format, with atom caches."""

__version__ = "0.1.0"
__all__ = ["types", "cache", "decode", "encode"]