"""Limit middlewares: stop a turn after too many model requests or tool calls."""
from typing import Dict
import logging

from pydantic import BaseModel, Field

from agents_with_middleware.middleware.base import Middleware, define_middleware


logger = logging.getLogger(__name__)


class ModelRequestLimitState(BaseModel):
    model_request_count: int = 0


class ModelRequestLimitContext(BaseModel):
    max_model_requests: int = Field(default=10, ge=1)


class ToolCallLimitState(BaseModel):
    tool_call_counts: Dict[str, int] = Field(default_factory=dict)


class ToolCallLimitContext(BaseModel):
    # Tool name -> maximum number of calls in one turn
    tool_call_limits: Dict[str, int] = Field(default_factory=dict)


def model_request_limit(name: str = "ModelRequestLimit") -> Middleware:
    """Terminate the turn once the model would be called more than allowed.

    Context:
        max_model_requests: Maximum model calls per turn (default 10)

    State:
        model_request_count: Model calls made so far
    """

    def before_model(state, runtime, controls):
        count = state["model_request_count"] + 1
        limit = runtime.context["max_model_requests"]

        if count > limit:
            logger.info("Model request limit reached (%d); terminating", limit)
            return controls.terminate({"model_request_count": state["model_request_count"]})

        return {"model_request_count": count}

    return define_middleware(
        name,
        state_schema=ModelRequestLimitState,
        context_schema=ModelRequestLimitContext,
        before_model=before_model,
    )


def tool_call_limit(name: str = "ToolCallLimit") -> Middleware:
    """Terminate the turn when the model requests a tool more than allowed.

    The requested calls that cross the limit are not executed.

    Context:
        tool_call_limits: Mapping of tool name to maximum calls per turn

    State:
        tool_call_counts: Calls requested so far, per tool name
    """

    def after_model(state, runtime, controls):
        if not runtime.tool_calls:
            return None

        limits = runtime.context["tool_call_limits"]
        counts = dict(state["tool_call_counts"])
        for call in runtime.tool_calls:
            counts[call.name] = counts.get(call.name, 0) + 1

        exceeded = [tool for tool, limit in limits.items() if counts.get(tool, 0) > limit]
        if exceeded:
            logger.info("Tool call limit exceeded for %s; terminating", ", ".join(exceeded))
            return controls.terminate({"tool_call_counts": counts})

        return {"tool_call_counts": counts}

    return define_middleware(
        name,
        state_schema=ToolCallLimitState,
        context_schema=ToolCallLimitContext,
        after_model=after_model,
    )
