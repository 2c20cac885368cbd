"""Usage tracking middleware: token totals, model calls and tool call counts."""
from typing import Dict
import logging

from pydantic import BaseModel, Field

from agents_with_middleware.middleware.base import Middleware, define_middleware


logger = logging.getLogger(__name__)


class UsageStats(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    model_calls: int = 0
    tool_calls: Dict[str, int] = Field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class UsageTrackingState(BaseModel):
    usage: UsageStats = Field(default_factory=UsageStats)


def usage_tracking(name: str = "UsageTracking") -> Middleware:
    """Accumulate usage for the turn in ``state["usage"]``.

    Model calls are counted before each call (so failed calls count too);
    tokens and requested tool calls after each successful call.
    """

    def before_model(state, runtime, controls):
        usage = state["usage"]
        return {"usage": usage.model_copy(update={"model_calls": usage.model_calls + 1})}

    def after_model(state, runtime, controls):
        if runtime.model_error is not None:
            return None

        usage = state["usage"]
        tool_calls = dict(usage.tool_calls)
        for call in runtime.tool_calls:
            tool_calls[call.name] = tool_calls.get(call.name, 0) + 1

        updated = usage.model_copy(
            update={
                "input_tokens": usage.input_tokens + runtime.token_usage.input_tokens,
                "output_tokens": usage.output_tokens + runtime.token_usage.output_tokens,
                "tool_calls": tool_calls,
            }
        )

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Usage after model call #%d: input=%d output=%d tools=%s",
                updated.model_calls,
                updated.input_tokens,
                updated.output_tokens,
                [call.name for call in runtime.tool_calls],
            )

        return {"usage": updated}

    return define_middleware(
        name,
        state_schema=UsageTrackingState,
        before_model=before_model,
        after_model=after_model,
    )
