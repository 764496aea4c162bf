"""
Runtime assembly: wires settings, store, tool providers, engines and sessions.
"""

from dataclasses import dataclass, field
from typing import Callable

import structlog

from .agent import ConversationEngine, ConversationSession, PromptAugmenter, SessionManager, SummarizationPolicy
from .config import Settings, get_settings
from .errors import ConfigError
from .llm import ProviderAdapter, create_adapter
from .store import SessionStore, SqlSessionStore
from .tools import ToolProviderConnectionManager, ToolRegistry

logger = structlog.get_logger()

AdapterFactory = Callable[[str, Settings], ProviderAdapter]


def summarizer_session_id(provider: str) -> str:
    return f"{provider}-summarize"


@dataclass
class Runtime:
    """Everything a front end needs to serve conversations."""

    settings: Settings
    store: SessionStore
    connections: ToolProviderConnectionManager
    tool_registry: ToolRegistry
    sessions: SessionManager
    adapters: list[ProviderAdapter] = field(default_factory=list)

    async def aclose(self) -> None:
        """Close tool provider connections, HTTP clients and the store."""
        await self.connections.close()
        for adapter in self.adapters:
            await adapter.aclose()
        close_store = getattr(self.store, "close", None)
        if close_store is not None:
            await close_store()
        logger.info("Runtime closed")


async def _build_summarization(
    settings: Settings,
    store: SessionStore,
    adapter_factory: AdapterFactory,
    adapters: list[ProviderAdapter],
) -> SummarizationPolicy | None:
    provider = settings.summarizer_provider
    try:
        adapter = adapter_factory(provider, settings)
    except ConfigError as e:
        logger.warning("Summarization disabled", provider=provider, error=str(e))
        return None
    adapters.append(adapter)

    # The summarizer has its own persisted config, like any other session
    session_id = summarizer_session_id(provider)
    config = await store.load_config(session_id)
    if config is None:
        config = settings.summarizer_config()
        await store.save_config(session_id, config)

    engine = ConversationEngine(adapter, tool_registry=None, max_rounds=settings.max_tool_rounds)
    return SummarizationPolicy(engine, config)


async def build_runtime(
    settings: Settings | None = None,
    store: SessionStore | None = None,
    adapter_factory: AdapterFactory = create_adapter,
    connections: ToolProviderConnectionManager | None = None,
    prompt_augmenter: PromptAugmenter | None = None,
) -> Runtime:
    """Create one loaded session per enabled provider."""
    settings = settings or get_settings()
    store = store or await SqlSessionStore.create(settings.database_url)
    connections = connections or ToolProviderConnectionManager(settings.mcp_servers)
    tool_registry = ToolRegistry(connections)
    adapters: list[ProviderAdapter] = []

    summarization = await _build_summarization(settings, store, adapter_factory, adapters)

    sessions: list[ConversationSession] = []
    for provider in settings.enabled_providers:
        try:
            adapter = adapter_factory(provider, settings)
        except ConfigError as e:
            logger.warning("Provider skipped", provider=provider, error=str(e))
            continue
        adapters.append(adapter)

        session = ConversationSession(
            session_id=provider,
            engine=ConversationEngine(adapter, tool_registry, max_rounds=settings.max_tool_rounds),
            store=store,
            default_config=settings.conversation_defaults(),
            summarization=summarization,
            prompt_augmenter=prompt_augmenter,
        )
        await session.load()
        sessions.append(session)

    if not sessions:
        raise ConfigError("No LLM provider is configured; set credentials for at least one provider")

    logger.info(
        "Runtime ready",
        sessions=[s.session_id for s in sessions],
        tool_providers=connections.provider_ids,
        summarization=summarization is not None,
    )
    return Runtime(
        settings=settings,
        store=store,
        connections=connections,
        tool_registry=tool_registry,
        sessions=SessionManager(sessions, tool_registry=tool_registry),
        adapters=adapters,
    )
