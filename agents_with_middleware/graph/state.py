"""State definitions for the LangGraph orchestration loop."""
from typing import TypedDict, Dict, Any, List

from agents_with_middleware.middleware.runtime import Runtime


# Routing targets returned by the resolver
MODEL_NODE = "model"
TOOLS_NODE = "tools"
END_ROUTE = "end"


class LoopState(TypedDict, total=False):
    """Channels of the orchestration graph for one invocation.

    Every channel keeps the last value written, so nodes always return the
    complete new value of the channels they touch.

    Attributes:
        values: The agent state (built-in ``messages`` plus declared fields)
        runtime: Read-only runtime snapshot for the current step
        attempts: Retry counters keyed by retried node
        retry_reasons: Retry reasons keyed by retried node, oldest first
        next_node: Resolver decision: "model", "tools" or "end"
        retrying: True when the next MODEL entry is a same-node retry
    """
    # Agent state seen by hooks and returned by invoke()
    values: Dict[str, Any]

    runtime: Runtime

    # Per-node retry counters, never reset within an invocation
    attempts: Dict[str, int]

    retry_reasons: Dict[str, List[str]]

    next_node: str

    retrying: bool
