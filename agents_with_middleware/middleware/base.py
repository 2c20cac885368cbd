"""Middleware value objects.

A middleware contributes state and context fields plus up to three hooks:

- ``prepare_call(call, state, runtime)`` returns a new `PreparedCall`, a
  partial mapping of its fields, or None
- ``before_model(state, runtime, controls)`` and
  ``after_model(state, runtime, controls)`` return a state patch, a control
  action, or None

Every hook is optional; a missing hook means "no effect, continue".

Example:
    ```python
    from pydantic import BaseModel

    class CounterState(BaseModel):
        count: int = 0

    counter = define_middleware(
        "Counter",
        state_schema=CounterState,
        before_model=lambda state, runtime, controls: {"count": state["count"] + 1},
    )
    ```
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Tuple, Union

from agents_with_middleware.middleware.controls import ControlAction, Controls
from agents_with_middleware.middleware.prepared_call import PreparedCall
from agents_with_middleware.middleware.runtime import Runtime
from agents_with_middleware.schema.fields import FieldSpec, SchemaLike, normalize_schema


StateView = Mapping[str, Any]
HookResult = Union[Mapping[str, Any], ControlAction, None]

PrepareCallHook = Callable[[PreparedCall, StateView, Runtime], Union[PreparedCall, Mapping[str, Any], None]]
ModelHook = Callable[[StateView, Runtime, Controls], HookResult]


@dataclass(frozen=True)
class Middleware:
    """An immutable bundle of schemas and hooks.

    Use `define_middleware` to build one from a pydantic model or a list of
    FieldSpec; the schemas stored here are already normalised.
    """
    name: str
    state_schema: Tuple[FieldSpec, ...] = ()
    context_schema: Tuple[FieldSpec, ...] = ()
    prepare_call: Optional[PrepareCallHook] = None
    before_model: Optional[ModelHook] = None
    after_model: Optional[ModelHook] = None

    def __post_init__(self):
        if not self.name:
            raise ValueError("Middleware name must be non-empty")
        object.__setattr__(self, "state_schema", normalize_schema(self.state_schema))
        object.__setattr__(self, "context_schema", normalize_schema(self.context_schema))

    def __repr__(self) -> str:
        hooks = [h for h in ("prepare_call", "before_model", "after_model") if getattr(self, h)]
        return f"Middleware(name={self.name!r}, hooks={hooks})"


def define_middleware(
    name: str,
    *,
    state_schema: SchemaLike = None,
    context_schema: SchemaLike = None,
    prepare_call: Optional[PrepareCallHook] = None,
    before_model: Optional[ModelHook] = None,
    after_model: Optional[ModelHook] = None,
) -> Middleware:
    """Create a middleware.

    Args:
        name: Unique name, used in diagnostics and log lines
        state_schema: Pydantic model class or sequence of FieldSpec
        context_schema: Pydantic model class or sequence of FieldSpec
        prepare_call: Request-shaping hook
        before_model: Hook run before each inference call
        after_model: Hook run after each inference call

    Returns:
        Middleware instance
    """
    return Middleware(
        name=name,
        state_schema=state_schema,
        context_schema=context_schema,
        prepare_call=prepare_call,
        before_model=before_model,
        after_model=after_model,
    )
