"""History middlewares: keep the conversation sent to the model short.

- message_trimming: shapes only the prepared call; state keeps everything
- summarization: replaces long histories in state with a summary
"""
from typing import Any, Callable, List, Optional, Sequence
import logging

from langchain_core.messages import BaseMessage, SystemMessage, ToolMessage
from pydantic import BaseModel, Field

from agents_with_middleware.middleware.base import Middleware, define_middleware


logger = logging.getLogger(__name__)


class TrimmingContext(BaseModel):
    max_messages: int = Field(default=10, ge=1)
    max_message_chars: int = Field(default=500, ge=1)


class SummarizationState(BaseModel):
    message_count: int = 0
    last_summary: Optional[str] = None


class SummarizationContext(BaseModel):
    max_messages_before_summary: int = Field(default=10, ge=1)


def _drop_orphan_tool_messages(messages: Sequence[Any]) -> List[Any]:
    """Remove leading ToolMessages whose AI tool call was cut off."""
    messages = list(messages)
    while messages and isinstance(messages[0], ToolMessage):
        messages.pop(0)
    return messages


def _truncate(message: Any, limit: int) -> Any:
    if isinstance(message, BaseMessage) and isinstance(message.content, str) and len(message.content) > limit:
        return message.model_copy(update={"content": message.content[:limit]})
    return message


def message_trimming(name: str = "MessageTrimming") -> Middleware:
    """Send only the most recent messages, each cut to a maximum length.

    Context:
        max_messages: Messages to keep (default 10)
        max_message_chars: Characters kept per text message (default 500)
    """

    def prepare_call(call, state, runtime):
        messages = call.messages if call.messages is not None else state["messages"]
        limit = runtime.context["max_messages"]
        if len(messages) <= limit and all(
            not isinstance(getattr(m, "content", None), str)
            or len(m.content) <= runtime.context["max_message_chars"]
            for m in messages
        ):
            return None

        trimmed = _drop_orphan_tool_messages(messages[-limit:])
        return {
            "messages": [_truncate(m, runtime.context["max_message_chars"]) for m in trimmed]
        }

    return define_middleware(
        name,
        context_schema=TrimmingContext,
        prepare_call=prepare_call,
    )


def count_summary(messages: Sequence[Any]) -> str:
    """Default summarizer: records how long the conversation was."""
    return f"Previous conversation summary: {len(messages)} messages exchanged."


def summarization(
    summarize: Optional[Callable[[Sequence[Any]], str]] = None,
    keep_last: int = 3,
    name: str = "Summarization",
) -> Middleware:
    """Replace long histories with a summary plus the last few messages.

    Args:
        summarize: Turns the full message list into summary text; e.g. a
            function calling a cheap chat model. Defaults to `count_summary`.
        keep_last: Recent messages kept verbatim after the summary (at least 1)
        name: Middleware name

    Context:
        max_messages_before_summary: History length that triggers a summary

    State:
        message_count: Messages in state after this middleware ran
        last_summary: The most recent summary text
    """
    if keep_last < 1:
        raise ValueError("keep_last must be at least 1")
    summarize = summarize or count_summary

    def before_model(state, runtime, controls):
        messages = state["messages"]
        if len(messages) <= runtime.context["max_messages_before_summary"]:
            return {"message_count": len(messages)}

        summary = summarize(messages)
        recent = _drop_orphan_tool_messages(messages[-keep_last:])
        logger.debug("Summarized %d messages, keeping %d", len(messages), len(recent))

        return {
            "messages": [SystemMessage(content=summary), *recent],
            "message_count": len(recent) + 1,
            "last_summary": summary,
        }

    return define_middleware(
        name,
        state_schema=SummarizationState,
        context_schema=SummarizationContext,
        before_model=before_model,
    )
