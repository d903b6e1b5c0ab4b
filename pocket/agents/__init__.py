"""AI Agents package."""

from pocket.agents.ai_agents import (
    AssistantReply,
    ExpenseCategorizer,
    FinanceAssistant,
    alias_key,
    build_context_block,
    extract_json,
)

__all__ = [
    "AssistantReply",
    "ExpenseCategorizer",
    "FinanceAssistant",
    "alias_key",
    "build_context_block",
    "extract_json",
]
