"""
Redis Record Store
==================

RecordStoreProtocol implementation over redis.asyncio.

Data Layout:
------------
One Redis hash per collection:

    key:    {key_prefix}{name}:{collection}
    field:  record id
    value:  JSON of VectorRecord.to_dict()

| Operation | Command | Notes                               |
|-----------|---------|-------------------------------------|
| add       | HSETNX  | 0 reply -> duplicate key            |
| get       | HGET    | nil -> Ok(None)                     |
| put       | HSET    | upsert                              |
| delete    | HDEL    | reply > 0 -> existed                |
| get_all   | HVALS   | O(N); order is Redis-defined        |
| count     | HLEN    |                                     |

Every command is a single atomic Redis call. Transport and decode failures
are returned as StorageError with the original exception attached; nothing
is raised to the caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, Optional

from vecal.core.config import RedisStoreConfig
from vecal.core.errors import Err, Ok, Result, StorageError
from vecal.core.types import VectorRecord

# Lazy import for optional redis dependency
if TYPE_CHECKING:
    import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


class RedisRecordStore:
    """
    Redis-backed record store.

    Args:
        name: Store name (part of the hash key)
        collection: Record collection (part of the hash key)
        config: Connection settings
        client: Pre-built async client (anything exposing the hash commands
            used here); when given, open() skips connecting and only pings

    Example:
        store = RedisRecordStore("docs", config=RedisStoreConfig.from_env())
        (await store.open()).unwrap()
        await store.add(record)
    """

    __slots__ = ("_name", "_collection", "_config", "_client", "_owns_client", "_open")

    def __init__(
        self,
        name: str,
        collection: str = "vectors",
        config: Optional[RedisStoreConfig] = None,
        client: Optional["aioredis.Redis"] = None,
    ) -> None:
        self._name = name
        self._collection = collection
        self._config = config or RedisStoreConfig()
        self._client = client
        self._owns_client = client is None
        self._open = False

    @property
    def key(self) -> str:
        """Hash key holding this collection."""
        return f"{self._config.key_prefix}{self._name}:{self._collection}"

    @property
    def is_open(self) -> bool:
        return self._open

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def open(self) -> Result[None, StorageError]:
        """
        Connect (unless a client was injected) and verify with PING.

        Returns:
            Ok(None) on success, Err(StorageError) on failure.
        """
        if self._client is None:
            try:
                import redis.asyncio as aioredis
            except ImportError:
                return Err(StorageError.connection_failed(
                    self._config.url,
                    ImportError("redis package not installed: pip install redis"),
                ))
            try:
                self._client = aioredis.from_url(
                    self._config.url,
                    socket_timeout=self._config.socket_timeout,
                    decode_responses=True,
                )
            except Exception as e:
                return Err(StorageError.connection_failed(self._config.url, e))

        try:
            await self._client.ping()
        except Exception as e:
            logger.warning("Redis ping failed for %s: %s", self._config.url, e)
            return Err(StorageError.connection_failed(self._config.url, e))

        self._open = True
        return Ok(None)

    async def close(self) -> None:
        """Close an owned client. Safe to call multiple times."""
        self._open = False
        if self._client is not None and self._owns_client:
            try:
                await self._client.aclose()
            except Exception as e:
                logger.debug("Ignoring error while closing Redis client: %s", e)
            self._client = None

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    @staticmethod
    def _encode(record: VectorRecord) -> Result[str, StorageError]:
        try:
            return Ok(json.dumps(record.to_dict()))
        except (TypeError, ValueError) as e:
            return Err(StorageError.serialization(record.id, e))

    @staticmethod
    def _decode(record_id: str, raw: Any) -> Result[VectorRecord, StorageError]:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return Ok(VectorRecord.from_dict(json.loads(raw)))
        except (TypeError, ValueError, KeyError) as e:
            return Err(StorageError.serialization(record_id, e))

    def _check_open(self) -> Optional[Err[StorageError]]:
        if not self._open or self._client is None:
            return Err(StorageError.not_open(self._name))
        return None

    # -------------------------------------------------------------------------
    # RecordStoreProtocol
    # -------------------------------------------------------------------------

    async def add(self, record: VectorRecord) -> Result[None, StorageError]:
        """Insert a new record; Err(duplicate_key) if the id exists."""
        if (err := self._check_open()) is not None:
            return err
        encoded = self._encode(record)
        if encoded.is_err():
            return encoded
        try:
            created = await self._client.hsetnx(self.key, record.id, encoded.unwrap())
        except asyncio.TimeoutError as e:
            return Err(StorageError.write_error(self._collection, "timeout", e))
        except Exception as e:
            return Err(StorageError.write_error(self._collection, str(e), e))
        if not created:
            return Err(StorageError.duplicate_key(self._collection, record.id))
        return Ok(None)

    async def get(self, record_id: str) -> Result[Optional[VectorRecord], StorageError]:
        if (err := self._check_open()) is not None:
            return err
        try:
            raw = await self._client.hget(self.key, record_id)
        except asyncio.TimeoutError as e:
            return Err(StorageError.read_error(self._collection, "timeout", e))
        except Exception as e:
            return Err(StorageError.read_error(self._collection, str(e), e))
        if raw is None:
            return Ok(None)
        return self._decode(record_id, raw)

    async def put(self, record: VectorRecord) -> Result[None, StorageError]:
        """Insert or replace."""
        if (err := self._check_open()) is not None:
            return err
        encoded = self._encode(record)
        if encoded.is_err():
            return encoded
        try:
            await self._client.hset(self.key, record.id, encoded.unwrap())
        except asyncio.TimeoutError as e:
            return Err(StorageError.write_error(self._collection, "timeout", e))
        except Exception as e:
            return Err(StorageError.write_error(self._collection, str(e), e))
        return Ok(None)

    async def delete(self, record_id: str) -> Result[bool, StorageError]:
        if (err := self._check_open()) is not None:
            return err
        try:
            removed = await self._client.hdel(self.key, record_id)
        except Exception as e:
            return Err(StorageError.write_error(self._collection, str(e), e))
        return Ok(int(removed) > 0)

    async def get_all(self) -> Result[list[VectorRecord], StorageError]:
        if (err := self._check_open()) is not None:
            return err
        try:
            values = await self._client.hvals(self.key)
        except Exception as e:
            return Err(StorageError.read_error(self._collection, str(e), e))

        records: list[VectorRecord] = []
        for raw in values:
            decoded = self._decode("<unknown>", raw)
            if decoded.is_err():
                return decoded
            records.append(decoded.unwrap())
        return Ok(records)

    async def count(self) -> Result[int, StorageError]:
        if (err := self._check_open()) is not None:
            return err
        try:
            return Ok(int(await self._client.hlen(self.key)))
        except Exception as e:
            return Err(StorageError.read_error(self._collection, str(e), e))

    def __repr__(self) -> str:
        return f"RedisRecordStore(key={self.key!r}, open={self._open})"
