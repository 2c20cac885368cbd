"""LangGraph graph builder for the middleware orchestration loop.

The loop has two nodes (model -> tools -> model ...) and one router:
- model: prepare_call, before_model, inference, after_model
- tools: runs the pending tool calls of the last model response

Every node writes its decision into ``next_node`` and `route_next` follows
it, so jump, terminate and retry all share a single routing mechanism.
"""
from typing import Any, Mapping, Optional, Sequence

from langgraph.graph import StateGraph, END

from agents_with_middleware.graph.nodes import (
    ROUTES,
    create_model_node,
    create_tools_node,
    route_next,
)
from agents_with_middleware.graph.state import END_ROUTE, LoopState, MODEL_NODE, TOOLS_NODE
from agents_with_middleware.middleware.pipeline import HookPipeline
from agents_with_middleware.providers import InferenceProvider, ToolExecutor
from agents_with_middleware.schema.composer import MergedSchemas


def create_agent_graph(
    pipeline: HookPipeline,
    schemas: MergedSchemas,
    provider: InferenceProvider,
    executor: ToolExecutor,
    default_model: Any = None,
    default_tools: Sequence[Any] = (),
    tool_registry: Optional[Mapping[str, Any]] = None,
):
    """Create the LangGraph state machine for one agent configuration.

    Args:
        pipeline: Hook pipeline over the configured middlewares
        schemas: Merged state and context schemas
        provider: Inference provider
        executor: Tool executor
        default_model: Model selector used when a prepared call sets none
        default_tools: Tools offered when a prepared call sets none
        tool_registry: Registered tools by name

    Returns:
        Compiled LangGraph graph (no checkpointer: nothing persists across
        invocations)
    """
    workflow = StateGraph(LoopState)

    workflow.add_node(
        MODEL_NODE,
        create_model_node(
            pipeline,
            schemas,
            provider,
            default_model=default_model,
            default_tools=default_tools,
            tool_registry=tool_registry,
        ),
    )

    workflow.add_node(
        TOOLS_NODE,
        create_tools_node(executor, schemas),
    )

    workflow.set_entry_point(MODEL_NODE)

    routing_map = {route: route for route in ROUTES if route != END_ROUTE}
    routing_map[END_ROUTE] = END

    workflow.add_conditional_edges(MODEL_NODE, route_next, routing_map)
    workflow.add_conditional_edges(TOOLS_NODE, route_next, routing_map)

    return workflow.compile()
