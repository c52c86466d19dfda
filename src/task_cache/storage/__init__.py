from .base import InMemoryStore, PersistentStore
from .factory import build_store
from .file_store import FileStore
from .redis_adapter import RedisStore

__all__ = ["PersistentStore", "InMemoryStore", "FileStore", "RedisStore", "build_store"]
