"""Graph package for the LangGraph orchestration loop."""

from agents_with_middleware.graph.state import (
    LoopState,
    MODEL_NODE,
    TOOLS_NODE,
    END_ROUTE,
)
from agents_with_middleware.graph.nodes import (
    create_model_node,
    create_tools_node,
    pending_tool_calls,
    route_next,
)
from agents_with_middleware.graph.resolver import (
    Transition,
    resolve_action,
    resolve_default,
)
from agents_with_middleware.graph.builder import create_agent_graph

__all__ = [
    # State
    "LoopState",
    "MODEL_NODE",
    "TOOLS_NODE",
    "END_ROUTE",
    # Nodes
    "create_model_node",
    "create_tools_node",
    "pending_tool_calls",
    "route_next",
    # Control resolver
    "Transition",
    "resolve_action",
    "resolve_default",
    # Graph builder
    "create_agent_graph",
]
