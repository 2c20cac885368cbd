"""Middleware package: hook contract types and the hook pipeline."""

from agents_with_middleware.middleware.base import Middleware, define_middleware
from agents_with_middleware.middleware.controls import (
    CONTROLS,
    MODEL,
    TOOLS,
    ControlAction,
    Controls,
    Jump,
    Retry,
    Terminate,
)
from agents_with_middleware.middleware.pipeline import HookPipeline, PhaseResult
from agents_with_middleware.middleware.prepared_call import PreparedCall
from agents_with_middleware.middleware.runtime import (
    ModelResponse,
    Runtime,
    TokenUsage,
    ToolCall,
    ToolResult,
)

__all__ = [
    "Middleware",
    "define_middleware",
    "CONTROLS",
    "MODEL",
    "TOOLS",
    "ControlAction",
    "Controls",
    "Jump",
    "Retry",
    "Terminate",
    "HookPipeline",
    "PhaseResult",
    "PreparedCall",
    "ModelResponse",
    "Runtime",
    "TokenUsage",
    "ToolCall",
    "ToolResult",
]
