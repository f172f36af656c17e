"""agent-loop - a model/tool turn loop with a guarded bash tool."""

__version__ = "0.1.0"

from agent_loop.agent import Agent, LoopResult, LoopState
from agent_loop.config import Config
from agent_loop.history import ConversationHistory

__all__ = ["Agent", "Config", "ConversationHistory", "LoopResult", "LoopState", "__version__"]
