"""
MCP tool provider connection.

The MCP client transports are anyio context managers whose cancel scopes must
be entered and exited by the same task. Each connection therefore runs its
transport and ClientSession inside one background task that stays parked
until close() is called; callers only talk to the initialized session.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx
import structlog
from mcp import ClientSession
from mcp.client.sse import sse_client
from mcp.client.streamable_http import streamable_http_client

from ..config import ToolProviderConfig
from ..errors import ProviderConnectionError, ToolInvocationError
from ..llm.base import ToolDescriptor
from .base import ToolProviderConnection, normalize_tool_result

logger = structlog.get_logger()


class McpConnection(ToolProviderConnection):
    """Connection to one MCP server over SSE or streamable HTTP."""

    def __init__(self, name: str, config: ToolProviderConfig):
        super().__init__(name)
        self.config = config
        self._session: ClientSession | None = None
        self._ready: asyncio.Future[None] | None = None
        self._closing = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def is_connected(self) -> bool:
        return self._session is not None and self._task is not None and not self._task.done()

    def _transport(self) -> Any:
        if self.config.transport == "streamable_http":
            return self._streamable_http()
        return sse_client(self.config.url, timeout=self.config.timeout)

    @asynccontextmanager
    async def _streamable_http(self) -> AsyncIterator[Any]:
        # read timeout must cover idle gaps on the event stream
        timeout = httpx.Timeout(self.config.timeout, read=300.0)
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as http_client:
            async with streamable_http_client(self.config.url, http_client=http_client) as streams:
                yield streams

    async def connect(self) -> None:
        """Open the transport and complete the initialize handshake."""
        logger.info(
            "Connecting to tool provider",
            provider=self.name,
            url=self.config.url,
            transport=self.config.transport,
        )
        self._ready = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._run(), name=f"mcp-{self.name}")

        try:
            await asyncio.wait_for(asyncio.shield(self._ready), timeout=self.config.timeout)
        except asyncio.TimeoutError as e:
            self._task.cancel()
            raise ProviderConnectionError(self.name, "connection timed out") from e

        logger.info("Connected to tool provider", provider=self.name)

    async def _run(self) -> None:
        try:
            async with self._transport() as streams:
                read_stream, write_stream = streams[0], streams[1]
                async with ClientSession(read_stream, write_stream) as session:
                    await session.initialize()
                    self._session = session
                    self._ready.set_result(None)
                    await self._closing.wait()
        except Exception as e:
            if not self._ready.done():
                self._ready.set_exception(ProviderConnectionError(self.name, str(e)))
            else:
                logger.warning("Tool provider connection dropped", provider=self.name, error=str(e))
        finally:
            self._session = None

    def _require_session(self) -> ClientSession:
        if not self.is_connected:
            raise ProviderConnectionError(self.name, "connection is closed")
        return self._session

    async def list_tools(self) -> list[ToolDescriptor]:
        session = self._require_session()
        descriptors: list[ToolDescriptor] = []
        cursor = None

        while True:
            result = await session.list_tools(cursor=cursor)
            for tool in result.tools:
                descriptors.append(ToolDescriptor(
                    name=tool.name,
                    description=tool.description or "",
                    input_schema=dict(tool.inputSchema or {"type": "object", "properties": {}}),
                    provider=self.name,
                ))
            cursor = result.nextCursor
            if not cursor:
                break

        logger.debug("Listed tools", provider=self.name, count=len(descriptors))
        return descriptors

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        session = self._require_session()
        logger.info("Calling tool", provider=self.name, tool_name=name, arguments=arguments)

        try:
            result = await session.call_tool(name, arguments)
        except Exception as e:
            raise ToolInvocationError(name, f"Tool call failed: {e}") from e

        return normalize_tool_result(name, result)

    async def close(self) -> None:
        self._closing.set()
        if self._task is not None and not self._task.done():
            try:
                await asyncio.wait_for(self._task, timeout=self.config.timeout)
            except asyncio.TimeoutError:
                self._task.cancel()
            self._task = None
        logger.info("Tool provider connection closed", provider=self.name)
