"""Record store abstraction and reference implementations."""

from .base import RecordStore, in_scope
from .memory import InMemoryRecordStore
from .json_store import JsonSessionStore

__all__ = ["RecordStore", "in_scope", "InMemoryRecordStore", "JsonSessionStore"]
