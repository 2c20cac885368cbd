"""Shared fixtures: a scripted inference provider and a recording tool executor."""
from __future__ import annotations

from typing import Any, List, Optional

import pytest
from langchain_core.messages import AIMessage

from agents_with_middleware.middleware.prepared_call import PreparedCall
from agents_with_middleware.middleware.runtime import ModelResponse, ToolCall, ToolResult


def ai(content: str = "", tool_calls: Optional[List[dict]] = None, tokens: int = 0) -> AIMessage:
    """Build an AI message, optionally with tool calls and token usage."""
    kwargs: dict = {"content": content, "tool_calls": tool_calls or []}
    if tokens:
        kwargs["usage_metadata"] = {
            "input_tokens": tokens,
            "output_tokens": tokens,
            "total_tokens": 2 * tokens,
        }
    return AIMessage(**kwargs)


def tool_call(name: str, call_id: str, **args: Any) -> dict:
    return {"name": name, "args": args, "id": call_id}


class ScriptedProvider:
    """Inference provider that replays queued responses and records every call.

    A queued exception is raised instead of being returned. When the queue is
    empty, a plain "done" answer is returned.
    """

    def __init__(self, *responses: Any):
        self.responses = list(responses)
        self.calls: List[PreparedCall] = []

    def queue(self, *responses: Any) -> "ScriptedProvider":
        self.responses.extend(responses)
        return self

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def invoke(self, call: PreparedCall) -> ModelResponse:
        self.calls.append(call.copy())
        response = self.responses.pop(0) if self.responses else ai("done")
        if isinstance(response, BaseException):
            raise response
        return ModelResponse.from_message(response)


class RecordingExecutor:
    """Tool executor that answers from a dict of plain functions."""

    def __init__(self, **functions):
        self.functions = functions
        self.calls: List[ToolCall] = []

    def execute(self, call: ToolCall) -> ToolResult:
        self.calls.append(call)
        function = self.functions.get(call.name)
        if function is None:
            return ToolResult(id=call.id, name=call.name, error=f"Tool {call.name} not found")
        try:
            return ToolResult(id=call.id, name=call.name, result=function(**call.args))
        except Exception as e:
            return ToolResult(id=call.id, name=call.name, error=f"Error executing {call.name}: {e}")


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def executor():
    return RecordingExecutor(
        add=lambda a, b: a + b,
        echo=lambda text: text,
    )
