"""Client modules for the remote API and local storage."""

from instasnap.clients.instasnap_client import (
    InstaSnapAPIError,
    InstaSnapClient,
    get_api_client
)

from instasnap.clients.storage_client import (
    FileStore,
    KeyValueStore,
    MemoryStore,
    StorageError,
    StorageManager
)

__all__ = [
    "InstaSnapAPIError",
    "InstaSnapClient",
    "get_api_client",
    "FileStore",
    "KeyValueStore",
    "MemoryStore",
    "StorageError",
    "StorageManager"
]
