"""
Record store adapters - canonical persistence behind the IRecordStore contract.
"""

# Package initialization for store module
from .index import IRecordStore, InMemoryRecordStore
from .sqlite_store import SqliteRecordStore

__all__ = [
    'IRecordStore',
    'InMemoryRecordStore',
    'SqliteRecordStore',
]
