"""Read-only runtime snapshot and the records it carries."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from langchain_core.messages import AIMessage


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model."""
    id: str
    name: str
    args: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_langchain(cls, tool_call: Mapping[str, Any]) -> "ToolCall":
        """Build from a langchain-core ``ToolCall`` dict."""
        args = tool_call.get("args") or {}
        if not isinstance(args, dict):
            args = {"input": args}
        return cls(id=str(tool_call.get("id") or ""), name=tool_call["name"], args=dict(args))


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one tool call: a result or an error message."""
    id: str
    result: Any = None
    error: Optional[str] = None
    name: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_message(cls, message: Any) -> "TokenUsage":
        """Read ``usage_metadata`` from an AI message, if it has any."""
        usage = getattr(message, "usage_metadata", None) or {}
        input_tokens = int(usage.get("input_tokens", 0) or 0)
        output_tokens = int(usage.get("output_tokens", 0) or 0)
        total = usage.get("total_tokens")
        return cls(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=int(total) if total is not None else input_tokens + output_tokens,
        )


@dataclass(frozen=True)
class ModelResponse:
    """What the inference provider returns for one prepared call."""
    message: AIMessage
    tool_calls: Tuple[ToolCall, ...] = ()
    token_usage: TokenUsage = field(default_factory=TokenUsage)

    @classmethod
    def from_message(cls, message: AIMessage) -> "ModelResponse":
        return cls(
            message=message,
            tool_calls=tuple(ToolCall.from_langchain(tc) for tc in (message.tool_calls or [])),
            token_usage=TokenUsage.from_message(message),
        )


@dataclass(frozen=True)
class Runtime:
    """Per-step view of tool activity, token counters, context and iteration.

    Hooks receive a Runtime and must treat it as read-only; the loop builds a
    new one (`with_updates`) whenever any of its values change.

    Attributes:
        tool_calls: Tool calls requested by the latest model response
        tool_results: Results of the latest TOOLS visit
        token_usage: Token counts of the latest model response
        context: Validated invocation context
        current_iteration: Number of MODEL node entries so far
        model_error: Provider failure of the current MODEL visit, if any
    """
    tool_calls: Tuple[ToolCall, ...] = ()
    tool_results: Tuple[ToolResult, ...] = ()
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    context: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    current_iteration: int = 0
    model_error: Optional[Exception] = None

    @classmethod
    def initial(cls, context: Mapping[str, Any]) -> "Runtime":
        return cls(context=MappingProxyType(dict(context)))

    def with_updates(self, **changes: Any) -> "Runtime":
        for key in ("tool_calls", "tool_results"):
            if key in changes and not isinstance(changes[key], tuple):
                changes[key] = tuple(changes[key])
        return replace(self, **changes)

    def find_tool_call(self, call_id: str) -> Optional[ToolCall]:
        return next((tc for tc in self.tool_calls if tc.id == call_id), None)

    @property
    def tool_errors(self) -> Sequence[ToolResult]:
        return [tr for tr in self.tool_results if tr.error is not None]
