"""
Redis-backed context store.

Holds the working state (AgentContext) of every in-flight execution outside
the process, keyed by execution id and bounded by a TTL that is refreshed on
every save. Because nothing execution-local lives in process memory, a
restarted process can rehydrate an execution and a single strategy instance
can serve any number of concurrent executions.
"""

from __future__ import annotations

import redis.asyncio as aioredis
import structlog
from pydantic import BaseModel, ValidationError

from ..config.settings import Settings
from ..models.context import AgentContext

logger = structlog.get_logger()


class ContextStoreError(Exception):
    """Base exception for context store failures."""


class ContextNotFoundError(ContextStoreError):
    """Raised when no context exists for an execution (expired or never saved)."""

    def __init__(self, execution_id: str) -> None:
        super().__init__(f"Context not found for execution: {execution_id}")
        self.execution_id = execution_id


class ContextStoreConfig(BaseModel):
    """Redis context store configuration."""

    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "agent:context:"
    ttl_seconds: int = 86400  # 24 hours
    max_connections: int = 50
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings) -> ContextStoreConfig:
        return cls(
            redis_url=settings.redis_url,
            key_prefix=settings.context_key_prefix,
            ttl_seconds=settings.context_ttl_seconds,
        )


class RedisContextStore:
    """
    TTL-bound store of per-execution AgentContext values.

    Contexts are stored as pydantic JSON blobs under ``{prefix}{execution_id}``.
    Reads and writes propagate Redis errors; only ``clear`` is best-effort.
    """

    def __init__(self, config: ContextStoreConfig | None = None) -> None:
        self.config = config or ContextStoreConfig()
        self._redis: aioredis.Redis | None = None
        self._connected = False

    async def connect(self) -> None:
        """
        Establish Redis connection.

        Raises:
            redis.ConnectionError: If connection fails
        """
        if self._connected:
            return

        try:
            self._redis = aioredis.from_url(
                self.config.redis_url,
                max_connections=self.config.max_connections,
                socket_timeout=self.config.socket_timeout,
                socket_connect_timeout=self.config.socket_connect_timeout,
                decode_responses=True,
            )
            await self._redis.ping()
            self._connected = True
            logger.info(
                "context_store_connected",
                url=self.config.redis_url.split("@")[-1],
                ttl_seconds=self.config.ttl_seconds,
            )
        except Exception as e:
            logger.error("context_store_connect_failed", error=str(e))
            raise

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._redis and self._connected:
            await self._redis.aclose()
            self._connected = False
            logger.info("context_store_disconnected")

    def _key(self, execution_id: str) -> str:
        return f"{self.config.key_prefix}{execution_id}"

    def _client(self) -> aioredis.Redis:
        if not self._connected or self._redis is None:
            raise RuntimeError("Context store not connected")
        return self._redis

    async def save(self, context: AgentContext) -> None:
        """Store the context, refreshing its TTL."""
        context.touch()
        key = self._key(context.execution_id)
        await self._client().setex(key, self.config.ttl_seconds, context.model_dump_json())
        logger.debug(
            "context_saved",
            execution_id=context.execution_id,
            iteration=context.current_iteration,
        )

    async def get(self, execution_id: str) -> AgentContext | None:
        """Load a context, or None when it does not exist."""
        data = await self._client().get(self._key(execution_id))
        if data is None:
            return None

        try:
            return AgentContext.model_validate_json(data)
        except ValidationError as e:
            raise ContextStoreError(
                f"Corrupt context for execution {execution_id}: {e}"
            ) from e

    async def load(self, execution_id: str) -> AgentContext:
        """
        Load a context.

        Raises:
            ContextNotFoundError: If no context exists for the execution
        """
        context = await self.get(execution_id)
        if context is None:
            logger.warning("context_not_found", execution_id=execution_id)
            raise ContextNotFoundError(execution_id)
        return context

    async def exists(self, execution_id: str) -> bool:
        return bool(await self._client().exists(self._key(execution_id)))

    async def clear(self, execution_id: str) -> bool:
        """
        Delete a context. Best effort: failures are logged, never raised.

        Returns:
            True if a context was deleted
        """
        try:
            deleted = await self._client().delete(self._key(execution_id))
        except Exception as e:
            logger.warning("context_clear_failed", execution_id=execution_id, error=str(e))
            return False

        logger.debug("context_cleared", execution_id=execution_id, deleted=bool(deleted))
        return bool(deleted)

    async def extend_ttl(self, execution_id: str, ttl_seconds: int | None = None) -> bool:
        """Push back expiry of a context without rewriting it."""
        ttl = ttl_seconds or self.config.ttl_seconds
        return bool(await self._client().expire(self._key(execution_id), ttl))

    async def remaining_ttl(self, execution_id: str) -> int | None:
        """Seconds until the context expires (-1 without expiry), or None if missing."""
        ttl = await self._client().ttl(self._key(execution_id))
        return None if ttl == -2 else ttl

    async def active_execution_ids(self) -> list[str]:
        """Execution ids that currently have a stored context."""
        prefix = self.config.key_prefix
        return [
            key[len(prefix):]
            async for key in self._client().scan_iter(match=f"{prefix}*")
        ]
