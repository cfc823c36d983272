"""Simulated RPC network, value codec, in-memory persister, consistency checker and debug logging for distributed-system tests."""

__version__ = "0.1.0"
__all__ = ["checker", "codec", "debug", "persister", "rpc"]