"""Recovery middlewares: react to failed tool calls and failed model calls."""
from typing import Dict, List, Optional, Tuple, Type
import json
import logging

from langchain_core.messages import SystemMessage, ToolMessage
from pydantic import BaseModel, Field

from agents_with_middleware.middleware.base import Middleware, define_middleware


logger = logging.getLogger(__name__)


class ToolErrorFeedbackState(BaseModel):
    # Tool name -> failed calls so far in this turn
    tool_error_attempts: Dict[str, int] = Field(default_factory=dict)


class ToolErrorFeedbackContext(BaseModel):
    max_tool_error_retries: int = Field(default=2, ge=0)


class ModelRetryContext(BaseModel):
    max_model_retries: int = Field(default=3, ge=1)


def _format_args(args) -> str:
    try:
        return json.dumps(args, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return str(args)


def tool_error_feedback(name: str = "ToolErrorFeedback") -> Middleware:
    """Tell the model what went wrong with the tools it just called.

    After a TOOLS visit with failures, a system message listing each failed
    call (tool, arguments, error) is appended before the next model call. A
    tool that keeps failing past ``max_tool_error_retries`` is reported as
    unavailable so the model answers without it.
    """

    def before_model(state, runtime, controls):
        errors = runtime.tool_errors
        # Only right after a TOOLS visit; later model entries keep stale results
        if not errors or not state["messages"] or not isinstance(state["messages"][-1], ToolMessage):
            return None

        attempts = dict(state["tool_error_attempts"])
        limit = runtime.context["max_tool_error_retries"]
        lines: List[str] = []
        given_up: List[str] = []

        for result in errors:
            call = runtime.find_tool_call(result.id)
            tool_name = result.name or (call.name if call else "unknown")
            attempts[tool_name] = attempts.get(tool_name, 0) + 1

            if attempts[tool_name] > limit:
                if tool_name not in given_up:
                    given_up.append(tool_name)
                continue

            args = _format_args(call.args) if call else "{}"
            lines.append(f"- {tool_name} called with {args} failed: {result.error}")

        parts = []
        if lines:
            parts.append(
                "Some tool calls failed. Check the arguments and try again:\n" + "\n".join(lines)
            )
        if given_up:
            logger.info("Tool retries exhausted for %s", ", ".join(given_up))
            parts.append(
                f"Do not call {', '.join(given_up)} again; answer with the information you have."
            )

        return {
            "messages": [*state["messages"], SystemMessage(content="\n\n".join(parts))],
            "tool_error_attempts": attempts,
        }

    return define_middleware(
        name,
        state_schema=ToolErrorFeedbackState,
        context_schema=ToolErrorFeedbackContext,
        before_model=before_model,
    )


def model_retry(
    retry_on: Optional[Tuple[Type[BaseException], ...]] = None,
    name: str = "ModelRetry",
) -> Middleware:
    """Retry the model call when the inference provider fails.

    Args:
        retry_on: Exception types (of the provider's original error) worth
            retrying; every failure is retried when omitted
        name: Middleware name

    Context:
        max_model_retries: Attempts allowed before RetryExhaustedError
    """

    def after_model(state, runtime, controls):
        error = runtime.model_error
        if error is None:
            return None

        cause = error.__cause__ or error
        if retry_on and not isinstance(cause, retry_on):
            return None

        logger.warning("Model call failed, retrying: %s", cause)
        return controls.retry(
            reason=str(cause),
            max_attempts=runtime.context["max_model_retries"],
        )

    return define_middleware(
        name,
        context_schema=ModelRetryContext,
        after_model=after_model,
    )
