"""Control resolver: decides the next node and the state to carry there."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
import logging

from agents_with_middleware.errors import ControlTerminationError, RetryExhaustedError
from agents_with_middleware.graph.state import END_ROUTE, MODEL_NODE, TOOLS_NODE
from agents_with_middleware.middleware.controls import ControlAction, Jump, Retry, Terminate
from agents_with_middleware.schema.composer import MergedSchemas


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    """Where the loop goes next.

    Attributes:
        next_node: "model", "tools" or "end"
        state: State to carry into the next node
        attempts: Updated retry counters
        retrying: Whether the next MODEL entry is a same-node retry
        reasons: Retry reasons given so far, keyed by retried node
    """
    next_node: str
    state: Dict[str, Any]
    attempts: Dict[str, int] = field(default_factory=dict)
    retrying: bool = False
    reasons: Dict[str, List[str]] = field(default_factory=dict)


def _copy_reasons(reasons: Optional[Mapping[str, List[str]]]) -> Dict[str, List[str]]:
    return {node: list(items) for node, items in (reasons or {}).items()}


def resolve_default(
    state: Dict[str, Any],
    attempts: Dict[str, int],
    has_tool_calls: bool,
    reasons: Optional[Mapping[str, List[str]]] = None,
) -> Transition:
    """Transition when no hook returned a control action.

    Args:
        state: Current state
        attempts: Current retry counters
        has_tool_calls: Whether the last model response requested tools
        reasons: Retry reasons so far

    Returns:
        TOOLS when tools were requested, otherwise the end of the loop
    """
    next_node = TOOLS_NODE if has_tool_calls else END_ROUTE
    return Transition(
        next_node=next_node,
        state=state,
        attempts=dict(attempts),
        reasons=_copy_reasons(reasons),
    )


def resolve_action(
    action: ControlAction,
    *,
    state: Dict[str, Any],
    attempts: Mapping[str, int],
    current_node: str,
    schemas: MergedSchemas,
    source: Optional[str] = None,
    reasons: Optional[Mapping[str, List[str]]] = None,
) -> Transition:
    """Interpret a control action.

    Args:
        action: The action returned by a hook
        state: State at the moment the action was returned
        attempts: Retry counters so far
        current_node: Node the issuing hook ran in
        schemas: Merged schemas, used to merge patches
        source: Name of the issuing middleware, for diagnostics
        reasons: Retry reasons so far, keyed by retried node

    Returns:
        The transition to take

    Raises:
        ControlTerminationError: For ``terminate(error=...)``
        RetryExhaustedError: When a retry exceeds its ``max_attempts``
        TypeError: For anything that is not one of the three actions
    """
    attempts = dict(attempts)
    reasons = _copy_reasons(reasons)

    if isinstance(action, Jump):
        merged = schemas.merge(state, action.patch, source=source)
        logger.debug("Jump to %s requested by %s", action.target, source)
        return Transition(next_node=action.target, state=merged, attempts=attempts, reasons=reasons)

    if isinstance(action, Terminate):
        if action.error is not None:
            error = action.error
            cause = error if isinstance(error, BaseException) else None
            logger.debug("Terminate with error requested by %s: %s", source, error)
            raise ControlTerminationError(
                str(error) or type(error).__name__,
                error=cause,
                middleware=source,
            ) from cause

        merged = state
        if isinstance(action.result, Mapping):
            merged = schemas.merge(state, action.result, source=source)
        elif action.result is not None:
            logger.debug(
                "Ignoring non-mapping terminate result from %s: %s",
                source,
                type(action.result).__name__,
            )
        return Transition(next_node=END_ROUTE, state=merged, attempts=attempts, reasons=reasons)

    if isinstance(action, Retry):
        merged = schemas.merge(state, action.patch, source=source)
        node = action.retry_from or current_node
        attempts[node] = attempts.get(node, 0) + 1
        if action.reason:
            reasons.setdefault(node, []).append(action.reason)

        if attempts[node] > action.max_attempts:
            raise RetryExhaustedError(action.reason, attempts[node], node, reasons=reasons.get(node))

        logger.debug(
            "Retry %d/%d of %s requested by %s: %s",
            attempts[node],
            action.max_attempts,
            node,
            source,
            action.reason,
        )
        return Transition(
            next_node=node,
            state=merged,
            attempts=attempts,
            retrying=(node == MODEL_NODE and node == current_node),
            reasons=reasons,
        )

    raise TypeError(f"Unknown control action: {action!r}")
