"""Core loop: conversation, reasoner, tool execution and orchestration."""

from cardlink.core.accumulator import ToolCallAccumulator
from cardlink.core.context import Conversation, build_user_message
from cardlink.core.executor import ToolCallExecutor
from cardlink.core.orchestrator import ChatStream, Orchestrator, default_pipeline
from cardlink.core.reasoner import ActionType, Reasoner, ReasonerDecision

__all__ = [
    "ActionType",
    "ChatStream",
    "Conversation",
    "Orchestrator",
    "Reasoner",
    "ReasonerDecision",
    "ToolCallAccumulator",
    "ToolCallExecutor",
    "build_user_message",
    "default_pipeline",
]
