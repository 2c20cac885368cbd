"""Standard middlewares.

Each factory returns a ready-made `Middleware` that can be combined with
custom ones in any order:

- model_request_limit: terminate after too many model calls
- tool_call_limit: terminate after too many calls of a tool
- usage_tracking: accumulate token and call counts in state
- message_trimming: send only recent, shortened messages
- summarization: replace long histories with a summary
- dynamic_model: pick a fast or powerful model per request
- dynamic_prompt: build the system message from user preferences
- tool_selection: offer only the tools relevant to the request
- tool_error_feedback: report failed tool calls to the model
- model_retry: retry failed model calls
"""
from typing import Callable, Dict, List, Optional

from agents_with_middleware.middleware.base import Middleware
from agents_with_middleware.standard.dynamic import dynamic_model, dynamic_prompt, tool_selection
from agents_with_middleware.standard.history import message_trimming, summarization
from agents_with_middleware.standard.limits import model_request_limit, tool_call_limit
from agents_with_middleware.standard.recovery import model_retry, tool_error_feedback
from agents_with_middleware.standard.usage import UsageStats, usage_tracking


# Factories that need no arguments, by name
STANDARD_MIDDLEWARES: Dict[str, Callable[..., Middleware]] = {
    "model_request_limit": model_request_limit,
    "tool_call_limit": tool_call_limit,
    "usage_tracking": usage_tracking,
    "message_trimming": message_trimming,
    "summarization": summarization,
    "dynamic_model": dynamic_model,
    "dynamic_prompt": dynamic_prompt,
    "tool_error_feedback": tool_error_feedback,
    "model_retry": model_retry,
}


def get_standard_middleware(name: str) -> Optional[Middleware]:
    """Build a standard middleware by name.

    Returns:
        The middleware, or None if the name is unknown
    """
    factory = STANDARD_MIDDLEWARES.get(name)
    return factory() if factory else None


def get_standard_middlewares(names: List[str]) -> List[Middleware]:
    """Build several standard middlewares by name (skips unknown names)."""
    middlewares = []
    for name in names:
        middleware = get_standard_middleware(name)
        if middleware:
            middlewares.append(middleware)
    return middlewares


__all__ = [
    "STANDARD_MIDDLEWARES",
    "get_standard_middleware",
    "get_standard_middlewares",
    "model_request_limit",
    "tool_call_limit",
    "usage_tracking",
    "UsageStats",
    "message_trimming",
    "summarization",
    "dynamic_model",
    "dynamic_prompt",
    "tool_selection",
    "tool_error_feedback",
    "model_retry",
]
