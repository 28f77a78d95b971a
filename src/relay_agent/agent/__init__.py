"""
Agent module - the orchestration engine.

Includes:
- Agent: the agentic turn loop over an adapter and a tool registry
- ConversationContext: the transcript with snapshot/rollback
- Compaction: summarization of older messages under a token budget
"""

from .core import Agent, ConversationContext, EngineState
from .compaction import CompactionConfig, CompactionResult, compact_conversation, estimate_tokens

__all__ = [
    "Agent",
    "ConversationContext",
    "EngineState",
    "CompactionConfig",
    "CompactionResult",
    "compact_conversation",
    "estimate_tokens",
]
