"""Persistence helpers for the quality-event engine."""

from .record_store import InMemoryRecordStore

__all__ = ["InMemoryRecordStore"]
