"""Storage module with lazy loading support."""

from typing import TYPE_CHECKING

from .adapter import StorageAdapter
from .factory import StorageFactory, _register_backends

if TYPE_CHECKING:
    from .dataset_memory import InMemoryDatasetStorage
    from .dataset_redis import RedisDatasetStorage


def __getattr__(name):
    """Lazy import storage backends."""
    if name == "InMemoryDatasetStorage":
        from .dataset_memory import InMemoryDatasetStorage
        return InMemoryDatasetStorage
    elif name == "RedisDatasetStorage":
        from .dataset_redis import RedisDatasetStorage
        return RedisDatasetStorage
    else:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    "StorageAdapter",
    "StorageFactory",
    "_register_backends",
    "InMemoryDatasetStorage",
    "RedisDatasetStorage",
]
