"""Request-shaping middlewares: pick the model, the prompt and the tools per call."""
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence
import logging
import re

from langchain_core.messages import HumanMessage
from pydantic import BaseModel, Field

from agents_with_middleware.middleware.base import Middleware, define_middleware


logger = logging.getLogger(__name__)


COMPLEX_INDICATORS = ("analyze", "explain", "complex", "debug", "architecture", "design")


def _last_text(messages: Sequence[Any], human_only: bool = False) -> str:
    for message in reversed(messages):
        if human_only and not isinstance(message, HumanMessage):
            continue
        content = getattr(message, "content", None)
        if isinstance(content, str):
            return content
    return ""


# =============================================================================
# Dynamic model
# =============================================================================

class DynamicModelState(BaseModel):
    task_complexity: Literal["simple", "complex"] = "simple"


class DynamicModelContext(BaseModel):
    # Model selectors keyed "fast" and "powerful"; names or chat model objects
    models: Optional[Dict[str, Any]] = None


def dynamic_model(
    indicators: Sequence[str] = COMPLEX_INDICATORS,
    name: str = "DynamicModel",
) -> Middleware:
    """Use the "powerful" model for complex requests and the "fast" one otherwise.

    The task complexity is recorded in state before each call.
    """

    def is_complex(messages) -> bool:
        text = _last_text(messages).lower()
        return any(indicator in text for indicator in indicators)

    def prepare_call(call, state, runtime):
        models = runtime.context.get("models")
        if not models:
            return None

        key = "powerful" if is_complex(state["messages"]) else "fast"
        if key not in models:
            return None

        logger.debug("Using %s model for this call", key)
        return {"model": models[key]}

    def before_model(state, runtime, controls):
        complexity = "complex" if is_complex(state["messages"]) else "simple"
        if complexity != state["task_complexity"]:
            return {"task_complexity": complexity}
        return None

    return define_middleware(
        name,
        state_schema=DynamicModelState,
        context_schema=DynamicModelContext,
        prepare_call=prepare_call,
        before_model=before_model,
    )


# =============================================================================
# Dynamic prompt
# =============================================================================

class UserPreferences(BaseModel):
    tone: Optional[Literal["formal", "casual"]] = None
    expertise: Optional[Literal["beginner", "intermediate", "expert"]] = None


class DynamicPromptState(BaseModel):
    conversation_tone: Literal["formal", "casual"] = "casual"


class DynamicPromptContext(BaseModel):
    user_preferences: Optional[UserPreferences] = None


def build_dynamic_prompt(
    tone: str,
    expertise: str,
    last_message: str,
    message_count: int,
) -> str:
    """Compose the system prompt from tone, expertise and conversation shape."""
    parts: List[str] = []

    if tone == "formal":
        parts.append("Maintain a professional and formal tone.")
    else:
        parts.append("Be friendly and conversational.")

    if expertise == "beginner":
        parts.append("Explain concepts simply and avoid jargon.")
    elif expertise == "expert":
        parts.append("Use technical terms freely and be concise.")

    lowered = last_message.lower()
    if "code" in lowered or "function" in lowered:
        parts.append("Focus on code quality and best practices.")
    elif "explain" in lowered or "why" in lowered:
        parts.append("Provide detailed explanations with examples.")

    if message_count > 10:
        parts.append("Be concise as this is a long conversation.")

    return " ".join(parts)


def dynamic_prompt(name: str = "DynamicPrompt") -> Middleware:
    """Build the system message from user preferences and the conversation.

    An existing system message on the prepared call is kept and the dynamic
    instructions are appended to it.
    """

    def prepare_call(call, state, runtime):
        preferences = runtime.context.get("user_preferences") or UserPreferences()
        tone = preferences.tone or state["conversation_tone"]
        expertise = preferences.expertise or "intermediate"

        prompt = build_dynamic_prompt(
            tone,
            expertise,
            _last_text(state["messages"]),
            len(state["messages"]),
        )
        if call.system_message:
            prompt = f"{call.system_message}\n\n{prompt}"

        return {"system_message": prompt}

    return define_middleware(
        name,
        state_schema=DynamicPromptState,
        context_schema=DynamicPromptContext,
        prepare_call=prepare_call,
    )


# =============================================================================
# Tool selection
# =============================================================================

class ToolSelectionState(BaseModel):
    tool_usage_counts: Dict[str, int] = Field(default_factory=dict)


class ToolSelectionContext(BaseModel):
    max_tools_per_request: int = Field(default=5, ge=1)
    enable_keyword_matching: bool = True


def tool_selection(
    categories: Mapping[str, Sequence[str]],
    keywords: Mapping[str, Sequence[str]],
    name: str = "ToolSelection",
) -> Middleware:
    """Offer the model only the tools relevant to the latest user message.

    Args:
        categories: Category name -> registered tool names
        keywords: Category name -> keywords that select the category
        name: Middleware name

    Categories whose keywords appear in the last user message are selected.
    Without a match, the most used tools of the turn are offered, or else
    the first tools overall. Selections are capped at
    ``max_tools_per_request``.
    """
    all_tools = [tool for tools in categories.values() for tool in tools]
    patterns = {
        category: [re.compile(rf"\b{re.escape(word.lower())}\b") for word in words]
        for category, words in keywords.items()
    }

    def prepare_call(call, state, runtime):
        limit = runtime.context["max_tools_per_request"]
        text = _last_text(state["messages"], human_only=True).lower()

        selected: List[str] = []
        if runtime.context["enable_keyword_matching"]:
            for category, category_patterns in patterns.items():
                if any(p.search(text) for p in category_patterns):
                    selected.extend(t for t in categories.get(category, ()) if t not in selected)

        if not selected:
            usage = state["tool_usage_counts"]
            selected = sorted(usage, key=lambda tool: usage[tool], reverse=True) or list(all_tools)

        logger.debug("Selected tools: %s", selected[:limit])
        return {"tools": selected[:limit]}

    def after_model(state, runtime, controls):
        if not runtime.tool_calls:
            return None
        counts = dict(state["tool_usage_counts"])
        for call in runtime.tool_calls:
            counts[call.name] = counts.get(call.name, 0) + 1
        return {"tool_usage_counts": counts}

    return define_middleware(
        name,
        state_schema=ToolSelectionState,
        context_schema=ToolSelectionContext,
        prepare_call=prepare_call,
        after_model=after_model,
    )
