"""
Conversation Compaction - threshold-driven history summarization.

When a session's history reaches its auto-summarize threshold (or when a
summary is requested explicitly), the whole dialogue is sent to a dedicated
summarizer engine. The answer becomes the session's new system prompt and
the history is cleared, so the next turn starts from the compressed context.
"""

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from ..config import ConversationConfig
from ..errors import EmptyHistoryError
from ..llm.base import ChatTurn
from .core import ConversationEngine

if TYPE_CHECKING:
    from .session import ConversationSession

logger = structlog.get_logger()


@dataclass
class SummaryResult:
    """Result of a summarization."""

    new_system_prompt: str
    old_messages_count: int
    old_tokens_count: int
    new_tokens_count: int
    compression_percent: int


def compression_percent(old_tokens: int, new_tokens: int) -> int:
    """Percentage saved, truncated toward zero. 0 when there was nothing to compress."""
    if old_tokens <= 0:
        return 0
    return int((old_tokens - new_tokens) / old_tokens * 100)


def serialize_dialogue(session: "ConversationSession") -> str:
    """Dialogue as the JSON document the summarizer prompt describes."""
    messages = [{"role": "system", "content": session.config.system_prompt}]
    messages.extend(turn.to_dict() for turn in session.history)
    return json.dumps({"messages": messages}, ensure_ascii=False, indent=2)


class SummarizationPolicy:
    """Decides when to compress a session and performs the compression.

    The summarizer engine has no tool registry and its own config (low
    temperature, small token budget, compaction system prompt).
    """

    def __init__(self, engine: ConversationEngine, config: ConversationConfig):
        self.engine = engine
        self.config = config

    def should_summarize(self, session: "ConversationSession") -> bool:
        threshold = session.config.auto_summarize_threshold
        return threshold > 0 and len(session.history) >= threshold

    async def summarize(self, session: "ConversationSession") -> SummaryResult:
        """Compress the session's history into its system prompt.

        Raises EmptyHistoryError for an empty history, and the engine's
        error if the summarizer call aborts. The session is left untouched
        in both cases.
        """
        history = session.history
        if not history:
            raise EmptyHistoryError(f"Session '{session.session_id}' has no history to summarize")

        logger.info(
            "Starting summarization",
            session_id=session.session_id,
            message_count=len(history),
        )

        result = await self.engine.run(
            system_prompt=self.config.system_prompt,
            history=[ChatTurn(role="user", content=serialize_dialogue(session))],
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
        )
        if not result.ok:
            logger.error(
                "Summarization failed",
                session_id=session.session_id,
                error=str(result.error),
            )
            raise result.error

        summary = result.answer.strip()
        old_tokens = result.usage.prompt_tokens
        new_tokens = result.usage.completion_tokens

        await session.apply_summary(summary)

        summary_result = SummaryResult(
            new_system_prompt=summary,
            old_messages_count=len(history),
            old_tokens_count=old_tokens,
            new_tokens_count=new_tokens,
            compression_percent=compression_percent(old_tokens, new_tokens),
        )

        logger.info(
            "Summarization complete",
            session_id=session.session_id,
            old_tokens=old_tokens,
            new_tokens=new_tokens,
            compression_percent=summary_result.compression_percent,
        )
        return summary_result
