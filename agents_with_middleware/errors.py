"""Exception taxonomy for the middleware agent engine.

Every error the engine raises derives from `AgentError`:

- ConfigurationError: detected while building an agent, never at run time
- ContextValidationError: caller-supplied context failed validation
- StateValidationError: a hook returned a patch that failed its field schema
- ControlTerminationError: a middleware issued ``terminate(error=...)``
- RetryExhaustedError: a middleware retried a node more than allowed
- ExternalCallError: the inference provider or tool executor failed
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from agents_with_middleware.schema.fields import Diagnostic


class AgentError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(AgentError):
    """Raised when an agent configuration is invalid."""


class DuplicateContextFieldError(ConfigurationError):
    """Raised when two context schemas declare the same field name."""

    def __init__(self, fields: Iterable[str]):
        self.fields: List[str] = list(fields)
        super().__init__(
            "Duplicate context field(s) declared: " + ", ".join(self.fields)
        )


def _format_diagnostics(diagnostics: Sequence["Diagnostic"]) -> str:
    return "; ".join(f"{d.field}: {d.message}" for d in diagnostics)


class ContextValidationError(AgentError):
    """Raised before any node runs when the invocation context is invalid."""

    def __init__(self, diagnostics: Sequence["Diagnostic"]):
        self.diagnostics = list(diagnostics)
        super().__init__(f"Invalid context: {_format_diagnostics(self.diagnostics)}")

    @property
    def fields(self) -> List[str]:
        """Names of the offending fields, without repeats."""
        names: List[str] = []
        for diagnostic in self.diagnostics:
            if diagnostic.field not in names:
                names.append(diagnostic.field)
        return names


class StateValidationError(AgentError):
    """Raised when a state patch does not satisfy the merged state schema."""

    def __init__(self, diagnostics: Sequence["Diagnostic"], source: Optional[str] = None):
        self.diagnostics = list(diagnostics)
        self.source = source
        origin = f" from {source}" if source else ""
        super().__init__(
            f"Invalid state patch{origin}: {_format_diagnostics(self.diagnostics)}"
        )


class ControlTerminationError(AgentError):
    """A middleware terminated the invocation with an error."""

    def __init__(
        self,
        message: str,
        error: Optional[BaseException] = None,
        middleware: Optional[str] = None,
    ):
        self.error = error
        self.middleware = middleware
        super().__init__(message)


class RetryExhaustedError(AgentError):
    """A node was retried more times than its ``max_attempts`` allows.

    ``reason`` is the last retry's reason; ``reasons`` holds every reason
    given for this node during the invocation, oldest first.
    """

    def __init__(
        self,
        reason: Optional[str],
        attempts: int,
        node: str,
        reasons: Optional[Sequence[str]] = None,
    ):
        self.reason = reason
        self.attempts = attempts
        self.node = node
        self.reasons: List[str] = list(reasons) if reasons else ([reason] if reason else [])
        detail = f": {'; '.join(self.reasons)}" if self.reasons else ""
        super().__init__(
            f"Retry limit exhausted for node '{node}' after {attempts} attempts{detail}"
        )


class ExternalCallError(AgentError):
    """The inference provider or the tool executor raised."""

    def __init__(self, message: str, source: str):
        self.source = source
        super().__init__(message)
