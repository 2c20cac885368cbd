"""Control actions: the jump / terminate / retry vocabulary of middlewares.

A hook returns a control action to override the default transition of the
orchestration loop. Control actions are ordinary values, not exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Literal, Mapping, Optional, Union


MODEL = "model"
TOOLS = "tools"

JumpTarget = Literal["model", "tools"]
NODES = (MODEL, TOOLS)

DEFAULT_MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class Jump:
    target: str
    patch: Optional[Mapping[str, Any]] = None


@dataclass(frozen=True)
class Terminate:
    result: Any = None
    error: Optional[Union[BaseException, str]] = None


@dataclass(frozen=True)
class Retry:
    patch: Optional[Mapping[str, Any]] = None
    reason: Optional[str] = None
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    retry_from: Optional[str] = None


ControlAction = Union[Jump, Terminate, Retry]
CONTROL_ACTION_TYPES = (Jump, Terminate, Retry)


def is_control_action(value: Any) -> bool:
    return isinstance(value, CONTROL_ACTION_TYPES)


def _check_node(node: str, what: str) -> str:
    if node not in NODES:
        raise ValueError(f"Invalid {what} '{node}', expected one of {NODES}")
    return node


class Controls:
    """Factory for control actions, handed to every before/after hook."""

    def jump_to(self, target: JumpTarget, patch: Optional[Mapping[str, Any]] = None) -> Jump:
        """Go to ``target`` next, after merging ``patch`` into state."""
        return Jump(target=_check_node(target, "jump target"), patch=patch)

    def terminate(
        self,
        result: Any = None,
        error: Optional[Union[BaseException, str]] = None,
    ) -> Terminate:
        """End the invocation.

        With ``error`` the invocation fails with `ControlTerminationError`;
        otherwise ``result`` (a state patch) is merged and the state returned.
        An exception passed as ``result`` is treated as the error.
        """
        if error is None and isinstance(result, BaseException):
            result, error = None, result
        return Terminate(result=result, error=error)

    def retry(
        self,
        patch: Optional[Mapping[str, Any]] = None,
        *,
        reason: Optional[str] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_from: Optional[str] = None,
    ) -> Retry:
        """Re-enter ``retry_from`` (default: the current node).

        Exceeding ``max_attempts`` for the same node fails the invocation
        with `RetryExhaustedError`.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if retry_from is not None:
            _check_node(retry_from, "retry node")
        return Retry(patch=patch, reason=reason, max_attempts=max_attempts, retry_from=retry_from)


CONTROLS = Controls()


def describe(action: ControlAction) -> Dict[str, Any]:
    """Compact summary of an action for log lines."""
    if isinstance(action, Jump):
        return {"type": "jump", "target": action.target, "patch": sorted(action.patch or {})}
    if isinstance(action, Terminate):
        return {"type": "terminate", "error": action.error is not None}
    if isinstance(action, Retry):
        return {"type": "retry", "retry_from": action.retry_from, "reason": action.reason}
    raise TypeError(f"Not a control action: {action!r}")
