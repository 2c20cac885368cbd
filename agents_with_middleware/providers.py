"""Inference provider and tool executor used by the orchestration loop.

Both are external collaborators: the loop only relies on the two protocols
below. The default implementations drive langchain-core chat models and
tools, the same way the rest of the LangChain ecosystem does.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, SystemMessage
from langchain_core.tools import BaseTool

from agents_with_middleware.errors import ConfigurationError
from agents_with_middleware.middleware.prepared_call import PreparedCall
from agents_with_middleware.middleware.runtime import ModelResponse, ToolCall, ToolResult


logger = logging.getLogger(__name__)


class InferenceProvider(Protocol):
    """Turns a prepared call into an assistant message, tool calls and usage."""

    def invoke(self, call: PreparedCall) -> ModelResponse:
        ...


class ToolExecutor(Protocol):
    """Turns one tool call into a result or an error."""

    def execute(self, call: ToolCall) -> ToolResult:
        ...


def build_model_messages(call: PreparedCall) -> List[Any]:
    """Message list for the provider: system message first, then the call's messages."""
    messages: List[Any] = []
    if call.system_message:
        messages.append(SystemMessage(content=call.system_message))
    messages.extend(call.messages or [])
    return messages


def resolve_tool_selection(selection: Sequence[Any], registry: Mapping[str, Any]) -> List[Any]:
    """Replace tool names in a selection with the registered tool objects."""
    resolved = []
    for item in selection:
        if isinstance(item, str):
            if item not in registry:
                logger.warning("Ignoring unknown tool '%s' in prepared call", item)
                continue
            resolved.append(registry[item])
        else:
            resolved.append(item)
    return resolved


def build_tool_registry(tools: Iterable[Any]) -> Dict[str, Any]:
    """Index tools by name, rejecting unnamed and duplicate tools."""
    registry: Dict[str, Any] = {}
    for tool in tools:
        name = getattr(tool, "name", None)
        if not name:
            raise ConfigurationError(f"Tool {tool!r} has no name")
        if name in registry:
            raise ConfigurationError(f"Duplicate tool name '{name}'")
        registry[name] = tool
    return registry


class ChatModelProvider:
    """Inference provider backed by langchain-core chat models.

    ``call.model`` may be a chat model instance or a name registered in
    ``models``. Tools are bound with ``bind_tools`` only when the call lists
    any.

    Example:
        ```python
        from langchain_openai import ChatOpenAI

        provider = ChatModelProvider(models={
            "fast": ChatOpenAI(model="gpt-4o-mini"),
            "powerful": ChatOpenAI(model="gpt-4o"),
        })
        ```
    """

    def __init__(self, models: Optional[Mapping[str, BaseChatModel]] = None):
        self.models: Dict[str, BaseChatModel] = dict(models or {})

    def resolve_model(self, selector: Any) -> Any:
        """Turn a prepared call's model selector into a chat model.

        Raises:
            LookupError: For a missing selector or an unregistered name; the
                loop reports it as an ExternalCallError of the model call
        """
        if selector is None:
            raise LookupError("No model selected for this call")
        if isinstance(selector, str):
            try:
                return self.models[selector]
            except KeyError:
                raise LookupError(
                    f"Unknown model '{selector}'; registered: {sorted(self.models)}"
                ) from None
        return selector

    def invoke(self, call: PreparedCall) -> ModelResponse:
        llm = self.resolve_model(call.model)

        if call.tools:
            kwargs = {}
            if call.tool_choice is not None:
                kwargs["tool_choice"] = call.tool_choice
            llm = llm.bind_tools(call.tools, **kwargs)

        messages = build_model_messages(call)

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Invoking model: messages=%d tools=%s tool_choice=%r system=%s",
                len(messages),
                [getattr(t, "name", t) for t in (call.tools or [])],
                call.tool_choice,
                bool(call.system_message),
            )

        response = llm.invoke(messages)
        if not isinstance(response, AIMessage):
            # Plain LLMs and some fakes return text or another message type
            content = response.content if isinstance(response, BaseMessage) else str(response)
            response = AIMessage(content=content)

        return ModelResponse.from_message(response)


class RegistryToolExecutor:
    """Tool executor over a registry of langchain-core tools, keyed by name.

    Tool failures are returned as `ToolResult.error`; they are results of the
    call, not failures of the executor.
    """

    def __init__(self, tools: Iterable[BaseTool] = ()):
        self.tools: Dict[str, BaseTool] = build_tool_registry(tools)

    def execute(self, call: ToolCall) -> ToolResult:
        tool = self.tools.get(call.name)
        if tool is None:
            return ToolResult(id=call.id, name=call.name, error=f"Tool {call.name} not found")

        try:
            result = tool.invoke(call.args)
        except Exception as e:
            logger.debug("Tool %s failed: %s", call.name, e)
            return ToolResult(id=call.id, name=call.name, error=f"Error executing {call.name}: {e}")

        return ToolResult(id=call.id, name=call.name, result=result)
