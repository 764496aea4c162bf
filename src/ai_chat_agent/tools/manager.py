"""
Lazy, single-flight connection management for tool providers.
"""

import asyncio
from typing import Awaitable, Callable

import structlog

from ..config import ToolProviderConfig
from ..errors import ProviderConnectionError
from .base import ToolProviderConnection
from .connection import McpConnection

logger = structlog.get_logger()

ConnectionFactory = Callable[[str, ToolProviderConfig], Awaitable[ToolProviderConnection]]


async def connect_mcp(name: str, config: ToolProviderConfig) -> ToolProviderConnection:
    """Default factory: open an MCP connection."""
    connection = McpConnection(name, config)
    await connection.connect()
    return connection


class ToolProviderConnectionManager:
    """Owns one connection per configured tool provider.

    Connections are opened on first use and cached. Concurrent first calls
    for a provider share a single in-flight connect task, so the provider is
    dialed once and every waiter sees the same connection or the same error.
    Failed attempts are not cached.
    """

    def __init__(
        self,
        providers: dict[str, ToolProviderConfig],
        connection_factory: ConnectionFactory = connect_mcp,
    ):
        self._providers = {name: cfg for name, cfg in providers.items() if cfg.enabled}
        self._factory = connection_factory
        self._connections: dict[str, ToolProviderConnection] = {}
        self._pending: dict[str, asyncio.Task[ToolProviderConnection]] = {}

    @property
    def provider_ids(self) -> list[str]:
        return list(self._providers)

    async def connection(self, provider_id: str) -> ToolProviderConnection:
        """Get the connection for a provider, connecting if necessary."""
        config = self._providers.get(provider_id)
        if config is None:
            raise ProviderConnectionError(provider_id, "unknown tool provider")

        cached = self._connections.get(provider_id)
        if cached is not None:
            if cached.is_connected:
                return cached
            logger.warning("Dropping closed tool provider connection", provider=provider_id)
            del self._connections[provider_id]

        task = self._pending.get(provider_id)
        if task is None:
            task = asyncio.create_task(self._connect(provider_id, config))
            self._pending[provider_id] = task

        # A cancelled waiter must not cancel the attempt the others share
        return await asyncio.shield(task)

    async def _connect(self, provider_id: str, config: ToolProviderConfig) -> ToolProviderConnection:
        try:
            connection = await self._factory(provider_id, config)
        except ProviderConnectionError as e:
            logger.error("Tool provider connection failed", provider=provider_id, error=str(e))
            raise
        except Exception as e:
            logger.error("Tool provider connection failed", provider=provider_id, error=str(e))
            raise ProviderConnectionError(provider_id, str(e)) from e
        finally:
            self._pending.pop(provider_id, None)

        self._connections[provider_id] = connection
        return connection

    def connectivity(self) -> dict[str, bool]:
        """Snapshot of which providers currently have a live connection."""
        return {
            provider_id: provider_id in self._connections
            and self._connections[provider_id].is_connected
            for provider_id in self._providers
        }

    async def close(self) -> None:
        """Close every established connection."""
        for task in list(self._pending.values()):
            task.cancel()
        self._pending.clear()

        connections = list(self._connections.items())
        self._connections.clear()
        for provider_id, connection in connections:
            try:
                await connection.close()
            except Exception as e:
                logger.warning("Error closing tool provider", provider=provider_id, error=str(e))
