"""Hook pipeline: runs middleware hooks in configured order.

Each phase is a fold over the middlewares. A state patch is merged before the
next hook runs, so later middlewares observe earlier patches; the first
control action ends the phase and is handed back to the caller.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Sequence

from agents_with_middleware.middleware.base import Middleware
from agents_with_middleware.middleware.controls import (
    CONTROLS,
    ControlAction,
    Controls,
    describe,
    is_control_action,
)
from agents_with_middleware.middleware.prepared_call import PreparedCall
from agents_with_middleware.middleware.runtime import Runtime
from agents_with_middleware.schema.composer import MergedSchemas


logger = logging.getLogger(__name__)


BEFORE_MODEL = "before_model"
AFTER_MODEL = "after_model"


@dataclass(frozen=True)
class PhaseResult:
    """State after a phase, plus the control action that ended it, if any."""
    state: Dict[str, Any]
    action: Optional[ControlAction] = None
    source: Optional[str] = None


def state_view(state: Mapping[str, Any]) -> Mapping[str, Any]:
    """Read-only view of a copy of ``state`` for hooks."""
    return MappingProxyType(dict(state))


def _reject_awaitable(result: Any, middleware: Middleware, hook: str) -> None:
    if inspect.isawaitable(result):
        if inspect.iscoroutine(result):
            result.close()
        raise TypeError(
            f"{middleware.name}.{hook} returned an awaitable; hooks must be synchronous"
        )


class HookPipeline:
    """Ordered invocation of every middleware's hooks."""

    def __init__(
        self,
        middlewares: Sequence[Middleware],
        schemas: MergedSchemas,
        controls: Controls = CONTROLS,
    ):
        self.middlewares = tuple(middlewares)
        self.schemas = schemas
        self.controls = controls

    def prepare(self, call: PreparedCall, state: Mapping[str, Any], runtime: Runtime) -> PreparedCall:
        """Thread ``call`` through every ``prepare_call`` hook in order."""
        for mw in self.middlewares:
            if mw.prepare_call is None:
                continue
            result = mw.prepare_call(call, state_view(state), runtime)
            _reject_awaitable(result, mw, "prepare_call")
            if result is None:
                continue
            if not isinstance(result, (PreparedCall, Mapping)):
                raise TypeError(
                    f"{mw.name}.prepare_call must return a PreparedCall, a mapping or None, "
                    f"got {type(result).__name__}"
                )
            call = call.updated(result)
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(
                    "prepare_call applied: middleware=%s fields=%s",
                    mw.name,
                    sorted(result) if isinstance(result, Mapping) else "all",
                )
        return call

    def before_model(self, state: Mapping[str, Any], runtime: Runtime) -> PhaseResult:
        return self._run_phase(BEFORE_MODEL, state, runtime)

    def after_model(self, state: Mapping[str, Any], runtime: Runtime) -> PhaseResult:
        return self._run_phase(AFTER_MODEL, state, runtime)

    def _run_phase(self, phase: str, state: Mapping[str, Any], runtime: Runtime) -> PhaseResult:
        current = dict(state)

        for mw in self.middlewares:
            hook = getattr(mw, phase)
            if hook is None:
                continue

            result = hook(state_view(current), runtime, self.controls)
            _reject_awaitable(result, mw, phase)

            if result is None:
                continue

            if is_control_action(result):
                if logger.isEnabledFor(logging.DEBUG):
                    logger.debug(
                        "%s short-circuited by %s: %s", phase, mw.name, describe(result)
                    )
                return PhaseResult(state=current, action=result, source=mw.name)

            if not isinstance(result, Mapping):
                raise TypeError(
                    f"{mw.name}.{phase} must return a state patch, a control action or None, "
                    f"got {type(result).__name__}"
                )

            current = self.schemas.merge(current, result, source=f"{mw.name}.{phase}")
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("%s patch merged: middleware=%s fields=%s", phase, mw.name, sorted(result))

        return PhaseResult(state=current)
