"""Redis-backed dataset storage.

Each entity is one hash (``<prefix><entity>``) mapping record id to the
record's JSON. A set tracks which entities exist.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

import redis.asyncio as aioredis
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, WatchError
from redis.retry import Retry

from ..base import BaseDatasetStorage, DatasetExport, DatasetUnavailableError, incoming_wins
from .._utils import canonical_dumps, logger

MAX_EXPORT_ATTEMPTS = 5
MAX_APPLY_ATTEMPTS = 5


@dataclass
class RedisDatasetStorage(BaseDatasetStorage):
    """Redis dataset storage with consistent, transactional export."""

    _redis_client: Optional[Any] = field(init=False, default=None)
    _connection_pool: Optional[Any] = field(init=False, default=None)
    _initialized: bool = field(init=False, default=False)

    def __post_init__(self):
        self._prefix = f"crm_backup:{self.namespace}:"
        self._entities_key = f"{self._prefix}__entities__"

        self.redis_url = self.global_config.get("redis_url", "redis://localhost:6379")
        self.redis_password = self.global_config.get("redis_password", None)
        self.max_connections = self.global_config.get("redis_max_connections", 50)
        self.socket_timeout = self.global_config.get("redis_socket_timeout", 5.0)

    async def _ensure_initialized(self):
        """Ensure Redis connection is initialized."""
        if self._initialized:
            return

        retry = Retry(
            ExponentialBackoff(cap=10, base=1),
            retries=3,
            supported_errors=(RedisConnectionError, TimeoutError, ConnectionError)
        )

        self._connection_pool = aioredis.ConnectionPool.from_url(
            self.redis_url,
            password=self.redis_password,
            max_connections=self.max_connections,
            socket_timeout=self.socket_timeout,
            decode_responses=False,
            retry=retry,
        )
        self._redis_client = aioredis.Redis(connection_pool=self._connection_pool)

        try:
            await self._redis_client.ping()
            logger.info(f"Connected to Redis dataset namespace: {self.namespace}")
        except RedisConnectionError as e:
            raise DatasetUnavailableError(f"Redis unreachable at {self.redis_url}: {e}") from e

        self._initialized = True

    def _entity_key(self, entity: str) -> str:
        return f"{self._prefix}{entity}"

    @staticmethod
    def _decode(value: bytes) -> Dict[str, Any]:
        return json.loads(value.decode("utf-8"))

    async def export_consistent(self) -> DatasetExport:
        """Read every entity hash inside one MULTI/EXEC.

        WATCH on the entity set retries the read if an entity appears
        while the export is being assembled.
        """
        await self._ensure_initialized()

        for _ in range(MAX_EXPORT_ATTEMPTS):
            try:
                async with self._redis_client.pipeline(transaction=True) as pipe:
                    await pipe.watch(self._entities_key)
                    names = sorted(n.decode("utf-8") for n in await pipe.smembers(self._entities_key))
                    pipe.multi()
                    for name in names:
                        pipe.hgetall(self._entity_key(name))
                    results = await pipe.execute()
            except WatchError:
                logger.debug("Entity set changed during export, retrying")
                continue
            except RedisConnectionError as e:
                raise DatasetUnavailableError(str(e)) from e

            return {
                name: [self._decode(raw) for raw in hashed.values()]
                for name, hashed in zip(names, results)
            }

        raise DatasetUnavailableError(
            f"Could not obtain a consistent export after {MAX_EXPORT_ATTEMPTS} attempts"
        )

    async def get_by_ids(self, entity: str, ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        ids = [str(i) for i in ids]
        if not ids:
            return {}

        await self._ensure_initialized()
        try:
            values = await self._redis_client.hmget(self._entity_key(entity), ids)
        except RedisConnectionError as e:
            raise DatasetUnavailableError(str(e)) from e

        return {record_id: self._decode(raw) for record_id, raw in zip(ids, values) if raw is not None}

    async def apply_record(
        self,
        entity: str,
        record: Dict[str, Any],
        last_updated: Optional[Any] = None,
    ) -> bool:
        if last_updated is None:
            applied = await self._apply(entity, [record], lambda r, live: True)
        else:
            applied = await self._apply(
                entity, [record], lambda r, live: incoming_wins(last_updated, live, self.timestamp_field)
            )
        return bool(applied)

    async def apply_batch(
        self,
        entity: str,
        records: List[Dict[str, Any]],
        conditional: bool = True,
    ) -> List[str]:
        if not conditional:
            return await self._apply(entity, records, lambda r, live: True)
        return await self._apply(
            entity,
            records,
            lambda r, live: incoming_wins(r.get(self.timestamp_field), live, self.timestamp_field),
        )

    async def _apply(
        self,
        entity: str,
        records: List[Dict[str, Any]],
        should_write: Callable[[Dict[str, Any], Optional[Dict[str, Any]]], bool],
    ) -> List[str]:
        """Compare-and-set a batch under WATCH on the entity hash.

        A concurrent write to the same entity aborts the transaction and
        the comparison is redone against the new live state.
        """
        if not records:
            return []

        await self._ensure_initialized()

        ids = []
        for record in records:
            record_id = record.get(self.id_field)
            if record_id is None:
                raise ValueError(f"Record for {entity} has no '{self.id_field}' field")
            ids.append(str(record_id))

        key = self._entity_key(entity)
        for _ in range(MAX_APPLY_ATTEMPTS):
            try:
                async with self._redis_client.pipeline(transaction=True) as pipe:
                    await pipe.watch(key)
                    current = await pipe.hmget(key, ids)
                    mapping = {}
                    for record_id, record, raw in zip(ids, records, current):
                        live = self._decode(raw) if raw is not None else None
                        if should_write(record, live):
                            mapping[record_id] = canonical_dumps(record)
                    if not mapping:
                        await pipe.unwatch()
                        return []
                    pipe.multi()
                    pipe.sadd(self._entities_key, entity)
                    pipe.hset(key, mapping=mapping)
                    await pipe.execute()
            except WatchError:
                logger.debug(f"{entity} changed during apply, retrying")
                continue
            except RedisConnectionError as e:
                raise DatasetUnavailableError(str(e)) from e

            logger.debug(f"Applied {len(mapping)} {entity} records to Redis namespace: {self.namespace}")
            return list(mapping)

        raise DatasetUnavailableError(f"{entity} kept changing; gave up after {MAX_APPLY_ATTEMPTS} attempts")

    async def check_health(self) -> bool:
        try:
            await self._ensure_initialized()
            return bool(await self._redis_client.ping())
        except (RedisError, DatasetUnavailableError):
            return False

    async def close(self) -> None:
        if self._redis_client:
            await self._redis_client.aclose()
        if self._connection_pool:
            await self._connection_pool.disconnect()
        self._initialized = False
