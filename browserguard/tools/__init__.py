"""Tool surface: the injectable context and the dispatcher."""

from browserguard.tools.context import AutomationContext, CaptchaSolver, create_context
from browserguard.tools.dispatcher import ToolDispatcher

__all__ = [
    "AutomationContext",
    "CaptchaSolver",
    "create_context",
    "ToolDispatcher",
]
