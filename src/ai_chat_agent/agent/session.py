"""
Session management for conversations.

A ConversationSession owns one provider's config and history. Every change
is written to the store first and only then swapped into memory, so a failed
write leaves the session exactly as it was.
"""

import time
from asyncio import Lock
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Iterable

import structlog

from ..config import ConversationConfig
from ..errors import AgentError, ConfigError, PersistenceError, UnknownSessionError
from ..llm.base import ChatTurn, ToolDescriptor, Usage
from ..store import SessionStore
from .compaction import SummarizationPolicy, SummaryResult
from .core import ConversationEngine

logger = structlog.get_logger()

HELP_PREFIX = "/help "

# Takes the bare query, returns the text actually sent to the model
PromptAugmenter = Callable[[str], Awaitable[str]]


@dataclass
class ChatReply:
    """Answer to one user message, with its usage and cost."""

    answer: str
    usage: Usage
    cost: Decimal
    elapsed_ms: int
    rounds: int
    error: AgentError | None = None
    summary: SummaryResult | None = None


class ConversationSession:
    """One conversation with one provider."""

    def __init__(
        self,
        session_id: str,
        engine: ConversationEngine,
        store: SessionStore,
        default_config: ConversationConfig | None = None,
        summarization: SummarizationPolicy | None = None,
        prompt_augmenter: PromptAugmenter | None = None,
    ):
        self.session_id = session_id
        self.engine = engine
        self.store = store
        self.default_config = default_config or ConversationConfig()
        self.summarization = summarization
        self.prompt_augmenter = prompt_augmenter
        self._config = self.default_config
        self._history: tuple[ChatTurn, ...] = ()

    @property
    def provider(self) -> str:
        return self.engine.adapter.provider_name

    @property
    def config(self) -> ConversationConfig:
        return self._config

    @property
    def history(self) -> tuple[ChatTurn, ...]:
        return self._history

    async def _persist(self, operation: str, write: Awaitable[Any]) -> None:
        try:
            await write
        except PersistenceError:
            raise
        except Exception as e:
            logger.error("Store write failed", session_id=self.session_id, operation=operation, error=str(e))
            raise PersistenceError(f"Failed to {operation} for '{self.session_id}': {e}") from e

    async def load(self) -> None:
        """Load stored config and history, persisting the defaults when nothing is stored."""
        config = await self.store.load_config(self.session_id)
        if config is None:
            config = self.default_config
            await self._persist("save config", self.store.save_config(self.session_id, config))
        history = await self.store.load_history(self.session_id)

        self._config = config
        self._history = tuple(history)
        logger.info(
            "Session loaded",
            session_id=self.session_id,
            provider=self.provider,
            history_size=len(self._history),
        )

    async def replace_config(self, config: ConversationConfig | None = None, **changes: Any) -> ConversationConfig:
        """Swap in a new config, either given whole or as changes to the current one."""
        new_config = config if config is not None else self._config
        if changes:
            new_config = new_config.with_changes(**changes)

        await self._persist("save config", self.store.save_config(self.session_id, new_config))
        self._config = new_config
        logger.info("Session config updated", session_id=self.session_id, **new_config.to_dict())
        return new_config

    async def append(self, *turns: ChatTurn) -> None:
        new_history = self._history + turns
        await self._persist("save history", self.store.save_history(self.session_id, new_history))
        self._history = new_history

    async def clear_history(self) -> None:
        await self._persist("clear history", self.store.clear_history(self.session_id))
        self._history = ()
        logger.info("Session history cleared", session_id=self.session_id)

    async def apply_summary(self, system_prompt: str) -> ConversationConfig:
        """Replace the system prompt with a summary and drop the history as one step.

        The stored config is rolled back when clearing the stored history fails,
        and memory only changes once both writes succeed.
        """
        previous = self._config
        new_config = previous.with_changes(system_prompt=system_prompt)

        await self._persist("save config", self.store.save_config(self.session_id, new_config))
        try:
            await self._persist("clear history", self.store.clear_history(self.session_id))
        except PersistenceError:
            try:
                await self.store.save_config(self.session_id, previous)
            except Exception as e:
                logger.error("Config rollback failed", session_id=self.session_id, error=str(e))
            raise

        self._config = new_config
        self._history = ()
        logger.info("Session history replaced by summary", session_id=self.session_id)
        return new_config

    async def _prepare_user_text(self, text: str) -> tuple[str, str]:
        """Return (stored text, outgoing text) for a user message."""
        if not text.startswith(HELP_PREFIX):
            return text, text

        query = text[len(HELP_PREFIX):].strip()
        if self.prompt_augmenter is None:
            return query, query
        try:
            augmented = await self.prompt_augmenter(query)
        except Exception as e:
            logger.warning("Prompt augmentation failed, sending bare query", session_id=self.session_id, error=str(e))
            return query, query
        return query, augmented

    async def send_message(self, text: str) -> ChatReply:
        """Send a user message and record the exchange."""
        started = time.monotonic()
        stored_text, outgoing_text = await self._prepare_user_text(text)
        user_turn = ChatTurn(role="user", content=stored_text)
        config = self._config

        result = await self.engine.run(
            system_prompt=config.system_prompt,
            history=[*self._history, ChatTurn(role="user", content=outgoing_text)],
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )

        await self.append(user_turn, ChatTurn(role="assistant", content=result.answer))

        reply = ChatReply(
            answer=result.answer,
            usage=result.usage,
            cost=self.engine.adapter.compute_cost(result.usage.total_tokens),
            elapsed_ms=int((time.monotonic() - started) * 1000),
            rounds=result.rounds,
            error=result.error,
        )

        if self.summarization is not None and self.summarization.should_summarize(self):
            try:
                reply.summary = await self.summarization.summarize(self)
            except AgentError as e:
                logger.warning("Auto-summarization failed", session_id=self.session_id, error=str(e))

        return reply

    async def summarize(self) -> SummaryResult:
        if self.summarization is None:
            raise ConfigError(f"Summarization is not configured for '{self.session_id}'")
        return await self.summarization.summarize(self)


class SessionManager:
    """Routes requests to sessions, one at a time per session."""

    def __init__(
        self,
        sessions: Iterable[ConversationSession],
        tool_registry: Any = None,
    ):
        self._sessions = {session.session_id: session for session in sessions}
        self._locks = {session_id: Lock() for session_id in self._sessions}
        self.tool_registry = tool_registry

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def get(self, session_id: str) -> ConversationSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise UnknownSessionError(session_id)
        return session

    async def send_message(self, session_id: str, text: str) -> ChatReply:
        session = self.get(session_id)
        async with self._locks[session_id]:
            return await session.send_message(text)

    async def summarize(self, session_id: str) -> SummaryResult:
        session = self.get(session_id)
        async with self._locks[session_id]:
            return await session.summarize()

    async def list_tools(self) -> list[ToolDescriptor]:
        if self.tool_registry is None:
            return []
        return await self.tool_registry.list_tools()
