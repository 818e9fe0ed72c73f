"""
Storage backends for Casebook.

Re-exports the backend interfaces and the concrete implementations.
"""

from casebook.backends.abstract import AbstractStorageBackend, StorageBackend
from casebook.backends.memory import MemoryBackend
from casebook.backends.postgres import PostgresBackend

__all__ = [
    "AbstractStorageBackend",
    "StorageBackend",
    "MemoryBackend",
    "PostgresBackend",
]
