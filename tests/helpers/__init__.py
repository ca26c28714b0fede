"""Test helpers for schemastep."""

from .fake_db import FakeConnection, FakeDatabase, InMemoryLedger

__all__ = ["FakeConnection", "FakeDatabase", "InMemoryLedger"]
