"""
Session persistence.

A SessionStore keeps each session's ConversationConfig and ordered history.
Writes replace the stored value wholesale; a failed write raises
PersistenceError and must leave the previous stored value in place.
"""

from typing import Protocol, Sequence

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from .config import ConversationConfig
from .errors import PersistenceError
from .llm.base import ChatTurn
from .models import ClientConfig, MessageHistory, init_database

logger = structlog.get_logger()


class SessionStore(Protocol):
    """Persistence collaborator used by ConversationSession."""

    async def save_config(self, session_id: str, config: ConversationConfig) -> None: ...

    async def save_history(self, session_id: str, history: Sequence[ChatTurn]) -> None: ...

    async def load_config(self, session_id: str) -> ConversationConfig | None: ...

    async def load_history(self, session_id: str) -> list[ChatTurn]: ...

    async def clear_history(self, session_id: str) -> None: ...


class InMemorySessionStore:
    """Process-local store, used by tests and when no database is wanted."""

    def __init__(self) -> None:
        self._configs: dict[str, ConversationConfig] = {}
        self._histories: dict[str, list[ChatTurn]] = {}

    async def save_config(self, session_id: str, config: ConversationConfig) -> None:
        self._configs[session_id] = config

    async def save_history(self, session_id: str, history: Sequence[ChatTurn]) -> None:
        self._histories[session_id] = list(history)

    async def load_config(self, session_id: str) -> ConversationConfig | None:
        return self._configs.get(session_id)

    async def load_history(self, session_id: str) -> list[ChatTurn]:
        return list(self._histories.get(session_id, []))

    async def clear_history(self, session_id: str) -> None:
        self._histories.pop(session_id, None)


class SqlSessionStore:
    """SQLAlchemy-backed store (client_configs + message_history tables)."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    @classmethod
    async def create(cls, database_url: str) -> "SqlSessionStore":
        """Create tables if needed and return a store bound to the database."""
        return cls(await init_database(database_url))

    async def save_config(self, session_id: str, config: ConversationConfig) -> None:
        try:
            async with self._session_factory() as db:
                row = await db.get(ClientConfig, session_id)
                if row is None:
                    row = ClientConfig(client_id=session_id)
                    db.add(row)
                row.system_prompt = config.system_prompt
                row.temperature = config.temperature
                row.max_tokens = config.max_tokens
                row.auto_summarize_threshold = config.auto_summarize_threshold
                await db.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to save config", session_id=session_id, error=str(e))
            raise PersistenceError(f"Failed to save config for '{session_id}': {e}") from e

    async def save_history(self, session_id: str, history: Sequence[ChatTurn]) -> None:
        """Replace the stored history in one transaction."""
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    await db.execute(
                        delete(MessageHistory).where(MessageHistory.client_id == session_id)
                    )
                    db.add_all([
                        MessageHistory(
                            client_id=session_id,
                            role=turn.role,
                            content=turn.content,
                            position=position,
                        )
                        for position, turn in enumerate(history)
                    ])
        except SQLAlchemyError as e:
            logger.error("Failed to save history", session_id=session_id, error=str(e))
            raise PersistenceError(f"Failed to save history for '{session_id}': {e}") from e

    async def load_config(self, session_id: str) -> ConversationConfig | None:
        try:
            async with self._session_factory() as db:
                row = await db.get(ClientConfig, session_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load config for '{session_id}': {e}") from e

        if row is None:
            return None
        return ConversationConfig(
            system_prompt=row.system_prompt,
            temperature=row.temperature,
            max_tokens=row.max_tokens,
            auto_summarize_threshold=row.auto_summarize_threshold,
        )

    async def load_history(self, session_id: str) -> list[ChatTurn]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(MessageHistory)
                    .where(MessageHistory.client_id == session_id)
                    .order_by(MessageHistory.position)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load history for '{session_id}': {e}") from e

        return [ChatTurn(role=row.role, content=row.content) for row in rows]

    async def clear_history(self, session_id: str) -> None:
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    await db.execute(
                        delete(MessageHistory).where(MessageHistory.client_id == session_id)
                    )
        except SQLAlchemyError as e:
            logger.error("Failed to clear history", session_id=session_id, error=str(e))
            raise PersistenceError(f"Failed to clear history for '{session_id}': {e}") from e

    async def close(self) -> None:
        bind = self._session_factory.kw.get("bind")
        if bind is not None:
            await bind.dispose()
