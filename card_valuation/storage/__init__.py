"""Object storage and key-value capabilities."""

from card_valuation.storage.image_store import BaseImageStore, LocalImageStore
from card_valuation.storage.kv_store import BaseKeyValueStore, InMemoryKeyValueStore, SqlKeyValueStore

__all__ = [
    'BaseImageStore',
    'LocalImageStore',
    'BaseKeyValueStore',
    'InMemoryKeyValueStore',
    'SqlKeyValueStore',
]
