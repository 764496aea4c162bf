"""
Agent module - the conversation engine.

Includes:
- ConversationEngine: Request/tool-call round loop
- SummarizationPolicy: Threshold-driven history compaction
- ConversationSession: Persistent per-provider conversation
- SessionManager: Per-session request serialization
"""

from .core import ConversationEngine, EngineResult, EngineState, UsageAccumulator
from .compaction import SummarizationPolicy, SummaryResult, compression_percent
from .session import ChatReply, ConversationSession, PromptAugmenter, SessionManager

__all__ = [
    "ConversationEngine",
    "EngineResult",
    "EngineState",
    "UsageAccumulator",
    "SummarizationPolicy",
    "SummaryResult",
    "compression_percent",
    "ChatReply",
    "ConversationSession",
    "PromptAugmenter",
    "SessionManager",
]
