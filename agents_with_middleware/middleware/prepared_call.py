"""The prepared call: a request descriptor shaped by ``prepare_call`` hooks."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any, List, Mapping, Optional, Sequence, Union


@dataclass
class PreparedCall:
    """Parameters for the next inference call.

    Every field is optional; unset fields fall back to the agent's defaults
    when the call is made.

    Attributes:
        model: Model selector understood by the inference provider (a chat
            model instance or a registered name)
        messages: Messages to send (without the system message)
        system_message: System prompt prepended to ``messages``
        tool_choice: Tool-choice policy passed to ``bind_tools``
        tools: Tools to bind; tool objects or registered tool names
    """
    model: Any = None
    messages: Optional[List[Any]] = None
    system_message: Optional[str] = None
    tool_choice: Any = None
    tools: Optional[List[Any]] = None

    def updated(self, update: Union["PreparedCall", Mapping[str, Any]]) -> "PreparedCall":
        """Return the result of applying a hook's return value.

        A PreparedCall replaces this one entirely; a mapping replaces only the
        keys it names.
        """
        if isinstance(update, PreparedCall):
            return update
        known = {f.name for f in fields(self)}
        unknown = set(update) - known
        if unknown:
            raise TypeError(f"Unknown prepared call field(s): {', '.join(sorted(unknown))}")
        return replace(self, **dict(update))

    def copy(self) -> "PreparedCall":
        return replace(
            self,
            messages=list(self.messages) if self.messages is not None else None,
            tools=list(self.tools) if self.tools is not None else None,
        )


def seed_call(
    messages: Sequence[Any],
    model: Any = None,
    tools: Optional[Sequence[Any]] = None,
) -> PreparedCall:
    """Build the initial call for a MODEL visit from agent defaults and state."""
    return PreparedCall(
        model=model,
        messages=list(messages),
        tools=list(tools) if tools else None,
    )
