"""Agents-With-Middleware: a LangGraph engine for middleware-driven agent turns.

An agent turn alternates between a model call and tool execution. An ordered
chain of middlewares can shape each model request, patch the running state
before and after each call, and redirect the loop with three control actions:
jump, terminate and retry.
"""

from agents_with_middleware.agent import Agent, create_agent
from agents_with_middleware.errors import (
    AgentError,
    ConfigurationError,
    ContextValidationError,
    ControlTerminationError,
    DuplicateContextFieldError,
    ExternalCallError,
    RetryExhaustedError,
    StateValidationError,
)
from agents_with_middleware.middleware import (
    Controls,
    Jump,
    Middleware,
    ModelResponse,
    PreparedCall,
    Retry,
    Runtime,
    Terminate,
    TokenUsage,
    ToolCall,
    ToolResult,
    define_middleware,
)
from agents_with_middleware.providers import (
    ChatModelProvider,
    InferenceProvider,
    RegistryToolExecutor,
    ToolExecutor,
)
from agents_with_middleware.schema import FieldSpec, compose

__version__ = "0.1.0"
__all__ = [
    "Agent",
    "create_agent",
    # Middleware contract
    "Middleware",
    "define_middleware",
    "Controls",
    "Jump",
    "Terminate",
    "Retry",
    "PreparedCall",
    "Runtime",
    "ModelResponse",
    "TokenUsage",
    "ToolCall",
    "ToolResult",
    # Schemas
    "FieldSpec",
    "compose",
    # External collaborators
    "InferenceProvider",
    "ToolExecutor",
    "ChatModelProvider",
    "RegistryToolExecutor",
    # Errors
    "AgentError",
    "ConfigurationError",
    "DuplicateContextFieldError",
    "ContextValidationError",
    "StateValidationError",
    "ControlTerminationError",
    "RetryExhaustedError",
    "ExternalCallError",
]
