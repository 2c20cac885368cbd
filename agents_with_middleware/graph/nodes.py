"""Graph nodes for the middleware orchestration loop."""
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence
import logging

from langchain_core.messages import AIMessage, HumanMessage, ToolMessage

from agents_with_middleware.errors import AgentError, ExternalCallError
from agents_with_middleware.graph.resolver import Transition, resolve_action, resolve_default
from agents_with_middleware.graph.state import END_ROUTE, LoopState, MODEL_NODE, TOOLS_NODE
from agents_with_middleware.middleware.pipeline import HookPipeline
from agents_with_middleware.middleware.prepared_call import PreparedCall, seed_call
from agents_with_middleware.middleware.runtime import Runtime, ToolCall, ToolResult
from agents_with_middleware.providers import InferenceProvider, ToolExecutor, resolve_tool_selection
from agents_with_middleware.schema.composer import MergedSchemas


logger = logging.getLogger(__name__)


def initial_loop_state(values: Dict[str, Any], runtime: Runtime) -> LoopState:
    """Build the graph input for a fresh invocation."""
    return {
        "values": values,
        "runtime": runtime,
        "attempts": {},
        "retry_reasons": {},
        "next_node": MODEL_NODE,
        "retrying": False,
    }


def user_message(content: str) -> HumanMessage:
    return HumanMessage(content=content)


def pending_tool_calls(messages: Sequence[Any]) -> List[ToolCall]:
    """Tool calls of the last AI message that have no ToolMessage answer yet.

    Args:
        messages: Conversation history from state

    Returns:
        Unanswered tool calls, in request order
    """
    last_ai_index = None
    for index in range(len(messages) - 1, -1, -1):
        if isinstance(messages[index], AIMessage):
            last_ai_index = index
            break

    if last_ai_index is None:
        return []

    answered = {
        m.tool_call_id for m in messages[last_ai_index + 1:] if isinstance(m, ToolMessage)
    }
    return [
        ToolCall.from_langchain(tc)
        for tc in (messages[last_ai_index].tool_calls or [])
        if tc.get("id") not in answered
    ]


def tool_result_message(result: ToolResult, call: ToolCall) -> ToolMessage:
    """Render a tool result as the ToolMessage the model will read."""
    if result.error is not None:
        return ToolMessage(content=result.error, tool_call_id=call.id, name=call.name, status="error")
    content = result.result if isinstance(result.result, str) else str(result.result)
    return ToolMessage(content=content, tool_call_id=call.id, name=call.name)


def finalize_call(
    call: PreparedCall,
    state: Mapping[str, Any],
    *,
    seeded_messages: Optional[List[Any]],
    seeded_snapshot: List[Any],
    default_model: Any,
    default_tools: Sequence[Any],
    tool_registry: Mapping[str, Any],
) -> PreparedCall:
    """Fill unset fields of the prepared call from agent defaults and state.

    When no prepare_call hook touched the seeded messages, the messages sent
    are the state's messages after the before-model phase.
    """
    # Identity must be checked before copying the message list
    untouched = call.messages is seeded_messages and call.messages == seeded_snapshot
    call = call.copy()

    if call.messages is None or untouched:
        call.messages = list(state.get("messages", []))

    if call.model is None:
        call.model = default_model

    if call.tools is None:
        call.tools = list(default_tools)
    call.tools = resolve_tool_selection(call.tools, tool_registry)

    return call


def _loop_update(transition: Transition, runtime: Runtime) -> Dict:
    return {
        "values": transition.state,
        "runtime": runtime,
        "attempts": transition.attempts,
        "retry_reasons": transition.reasons,
        "next_node": transition.next_node,
        "retrying": transition.retrying,
    }


def create_model_node(
    pipeline: HookPipeline,
    schemas: MergedSchemas,
    provider: InferenceProvider,
    default_model: Any = None,
    default_tools: Sequence[Any] = (),
    tool_registry: Optional[Mapping[str, Any]] = None,
) -> Callable[[LoopState], Dict]:
    """Factory function to create the MODEL node.

    One visit runs, in order: prepare_call hooks, before_model hooks, the
    inference call, after_model hooks, and the control resolver. A control
    action from the before phase skips the inference call and the after phase.

    Args:
        pipeline: Hook pipeline over the configured middlewares
        schemas: Merged schemas of the configuration
        provider: Inference provider
        default_model: Model selector used when the prepared call sets none
        default_tools: Tools offered when the prepared call sets none
        tool_registry: Registered tools by name, for name-based selection

    Returns:
        A callable node function for the LangGraph
    """
    tool_registry = dict(tool_registry or {})

    def model_node(loop: LoopState) -> Dict:
        state = dict(loop["values"])
        attempts = dict(loop.get("attempts") or {})
        reasons = loop.get("retry_reasons") or {}
        runtime = loop["runtime"]

        # A same-node retry re-enters without counting a new iteration
        if not loop.get("retrying"):
            runtime = runtime.with_updates(current_iteration=runtime.current_iteration + 1)
        runtime = runtime.with_updates(model_error=None)

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Model node entered: iteration=%d messages=%d retrying=%s attempts=%s",
                runtime.current_iteration,
                len(state.get("messages", [])),
                bool(loop.get("retrying")),
                attempts,
            )

        seed = seed_call(state.get("messages", []), model=default_model, tools=default_tools)
        seeded_messages = seed.messages
        seeded_snapshot = list(seed.messages)
        call = pipeline.prepare(seed, state, runtime)

        before = pipeline.before_model(state, runtime)
        state = before.state
        if before.action is not None:
            transition = resolve_action(
                before.action,
                state=state,
                attempts=attempts,
                current_node=MODEL_NODE,
                schemas=schemas,
                source=before.source,
                reasons=reasons,
            )
            return _loop_update(transition, runtime)

        call = finalize_call(
            call,
            state,
            seeded_messages=seeded_messages,
            seeded_snapshot=seeded_snapshot,
            default_model=default_model,
            default_tools=default_tools,
            tool_registry=tool_registry,
        )

        model_error: Optional[ExternalCallError] = None
        has_tool_calls = False
        try:
            response = provider.invoke(call)
        except AgentError:
            raise
        except Exception as e:
            model_error = ExternalCallError(f"Inference provider failed: {e}", source="model")
            model_error.__cause__ = e
            runtime = runtime.with_updates(model_error=model_error)
            logger.debug("Inference provider failed: %s", e)
        else:
            state = schemas.merge(state, {"messages": [*state.get("messages", []), response.message]})
            runtime = runtime.with_updates(
                tool_calls=response.tool_calls,
                token_usage=response.token_usage,
            )
            has_tool_calls = bool(response.tool_calls)

            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(
                    "Model response: tool_calls=%s tokens=%d",
                    [tc.name for tc in response.tool_calls],
                    response.token_usage.total_tokens,
                )

        after = pipeline.after_model(state, runtime)
        state = after.state
        if after.action is not None:
            transition = resolve_action(
                after.action,
                state=state,
                attempts=attempts,
                current_node=MODEL_NODE,
                schemas=schemas,
                source=after.source,
                reasons=reasons,
            )
            return _loop_update(transition, runtime)

        if model_error is not None:
            raise model_error

        return _loop_update(resolve_default(state, attempts, has_tool_calls, reasons), runtime)

    return model_node


def create_tools_node(
    executor: ToolExecutor,
    schemas: MergedSchemas,
) -> Callable[[LoopState], Dict]:
    """Factory function to create the TOOLS node.

    Runs every pending tool call, then publishes all results at once: as
    ToolMessages appended to state and as ``runtime.tool_results``.

    Args:
        executor: Tool executor
        schemas: Merged schemas of the configuration

    Returns:
        A callable node function for the LangGraph
    """

    def tools_node(loop: LoopState) -> Dict:
        state = dict(loop["values"])
        runtime = loop["runtime"]
        calls = pending_tool_calls(state.get("messages", []))

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Tools node entered: tool_calls=%d names=%s",
                len(calls),
                [c.name for c in calls],
            )

        results: List[ToolResult] = []
        for call in calls:
            try:
                results.append(executor.execute(call))
            except AgentError:
                raise
            except Exception as e:
                raise ExternalCallError(
                    f"Tool executor failed for {call.name}: {e}", source="tools"
                ) from e

        tool_messages = [tool_result_message(r, c) for r, c in zip(results, calls)]
        state = schemas.merge(state, {"messages": [*state.get("messages", []), *tool_messages]})
        runtime = runtime.with_updates(tool_results=results)

        return {
            "values": state,
            "runtime": runtime,
            "next_node": MODEL_NODE,
            "retrying": False,
        }

    return tools_node


def route_next(loop: LoopState) -> str:
    """Read the resolver's decision.

    Returns:
        "model", "tools" or "end"
    """
    return loop.get("next_node") or END_ROUTE


# Targets a route may name, for the conditional edge maps
ROUTES = (MODEL_NODE, TOOLS_NODE, END_ROUTE)
