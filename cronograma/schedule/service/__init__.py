"""Schedule service package.

This package contains the persistence side of the schedule:
- backends.py: SQLite and in-memory slot storage
- gateway.py: save/load/subscribe with retry and verification
- seed.py: YAML seed for first-run initialization
- publish.py: draft save and draft -> published pipeline
"""
from .backends import MemorySlotBackend, SQLiteSlotBackend, SlotBackend
from .gateway import PersistenceGateway
from .publish import PublishPipeline

__all__ = [
    "MemorySlotBackend",
    "PersistenceGateway",
    "PublishPipeline",
    "SQLiteSlotBackend",
    "SlotBackend",
]
