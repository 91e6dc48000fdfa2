from busline.store.base import EntityStore
from busline.store.factory import create_store
from busline.store.memory import MemoryStore

__all__ = ["EntityStore", "MemoryStore", "create_store"]
