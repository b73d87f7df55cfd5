"""Storage factory for centralized dataset backend creation."""

from typing import Callable, Dict, Type

from crm_backup.base import BaseDatasetStorage


class StorageFactory:
    """Factory for creating dataset storage backends with validation and registration."""

    _dataset_backends: Dict[str, Callable[[], Type[BaseDatasetStorage]]] = {}

    ALLOWED_DATASET = {"memory", "redis"}

    @classmethod
    def register_dataset(cls, name: str, backend_loader: Callable[[], Type[BaseDatasetStorage]]) -> None:
        """Register a dataset storage backend.

        Args:
            name: Backend name (must be in ALLOWED_DATASET)
            backend_loader: Function that returns the dataset storage class

        Raises:
            ValueError: If backend name not in allowed list
        """
        if name not in cls.ALLOWED_DATASET:
            raise ValueError(f"Backend {name} not in allowed dataset backends: {cls.ALLOWED_DATASET}")
        cls._dataset_backends[name] = backend_loader

    @classmethod
    def create_dataset_storage(
        cls,
        backend: str,
        namespace: str,
        global_config: dict,
        **kwargs
    ) -> BaseDatasetStorage:
        """Create a dataset storage instance.

        Args:
            backend: Backend name
            namespace: Storage namespace
            global_config: Global configuration dict
            **kwargs: Additional backend-specific parameters

        Returns:
            Initialized dataset storage instance

        Raises:
            ValueError: If backend not registered
        """
        if backend not in cls._dataset_backends:
            _register_backends()
            if backend not in cls._dataset_backends:
                raise ValueError(f"Unknown dataset backend: {backend}. Available: {list(cls._dataset_backends.keys())}")

        backend_class = cls._dataset_backends[backend]()
        return backend_class(
            namespace=namespace,
            global_config=global_config,
            **kwargs
        )


def _get_memory_storage():
    """Lazy loader for in-memory dataset storage."""
    from .dataset_memory import InMemoryDatasetStorage
    return InMemoryDatasetStorage


def _get_redis_storage():
    """Lazy loader for Redis dataset storage."""
    from .dataset_redis import RedisDatasetStorage
    return RedisDatasetStorage


def _register_backends():
    """Register built-in backends with lazy loaders. Called when factory is first used."""
    for name, loader in (("memory", _get_memory_storage), ("redis", _get_redis_storage)):
        if name not in StorageFactory._dataset_backends:
            StorageFactory.register_dataset(name, loader)
