"""Schema composer: merges state and context schemas across middlewares.

Context fields must be unique across the agent's own context schema and every
middleware's context schema; a collision is a configuration error reported
once, with every colliding name, when the agent is built.

State fields may repeat. The last declaration of a name (in middleware order)
decides its validation and default, both when the initial state is built and
whenever a patch is merged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, TYPE_CHECKING

from agents_with_middleware.errors import (
    ContextValidationError,
    DuplicateContextFieldError,
    StateValidationError,
)
from agents_with_middleware.schema.fields import (
    Diagnostic,
    FieldSpec,
    FieldValidationError,
    SchemaLike,
    normalize_schema,
)

if TYPE_CHECKING:
    from agents_with_middleware.middleware.base import Middleware


logger = logging.getLogger(__name__)


MESSAGES_FIELD = FieldSpec(
    "messages",
    list,
    default_factory=list,
    description="Conversation history (langchain-core messages)",
)


@dataclass(frozen=True)
class MergedSchemas:
    """State and context schemas resolved for one agent configuration.

    Attributes:
        state_fields: One entry per state field name, in first-declared order,
            holding the last-declared specification for that name
        context_fields: Context fields in declaration order (names unique)
    """
    state_fields: Tuple[FieldSpec, ...]
    context_fields: Tuple[FieldSpec, ...]

    @property
    def state_field_names(self) -> List[str]:
        return [spec.name for spec in self.state_fields]

    @property
    def context_field_names(self) -> List[str]:
        return [spec.name for spec in self.context_fields]

    def default_state(self) -> Dict[str, Any]:
        """Build a fresh state from every state field's default.

        Fields without a default are left out; they appear once a hook
        patches them.
        """
        state: Dict[str, Any] = {}
        for spec in self.state_fields:
            if spec.has_default:
                state[spec.name] = spec.default_value()
        return state

    def parse_context(self, raw: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        """Validate caller context and fill in defaults.

        Keys that no schema declares are passed through unchanged.

        Raises:
            ContextValidationError: Listing every missing required field and
                every type diagnostic, in field order
        """
        raw = dict(raw or {})
        context: Dict[str, Any] = {}
        diagnostics: List[Diagnostic] = []

        for spec in self.context_fields:
            if spec.name in raw:
                try:
                    context[spec.name] = spec.validate(raw.pop(spec.name))
                except FieldValidationError as e:
                    diagnostics.extend(e.diagnostics)
            elif spec.required:
                diagnostics.append(Diagnostic(spec.name, "Field required"))
            elif spec.has_default:
                context[spec.name] = spec.default_value()
            else:
                context[spec.name] = None

        if diagnostics:
            raise ContextValidationError(diagnostics)

        # Undeclared keys are the caller's business
        context.update(raw)
        return context

    def validate_patch(self, patch: Mapping[str, Any], source: Optional[str] = None) -> Dict[str, Any]:
        """Validate the declared keys of a state patch.

        Raises:
            StateValidationError: If any declared field fails validation
        """
        specs = {spec.name: spec for spec in self.state_fields}
        validated: Dict[str, Any] = {}
        diagnostics: List[Diagnostic] = []

        for name, value in patch.items():
            spec = specs.get(name)
            if spec is None:
                validated[name] = value
                continue
            try:
                validated[name] = spec.validate(value)
            except FieldValidationError as e:
                diagnostics.extend(e.diagnostics)

        if diagnostics:
            raise StateValidationError(diagnostics, source=source)
        return validated

    def merge(
        self,
        state: Mapping[str, Any],
        patch: Optional[Mapping[str, Any]],
        source: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Return a new state with ``patch`` applied, field by field, last wins."""
        merged = dict(state)
        if patch:
            merged.update(self.validate_patch(patch, source=source))
        return merged


def compose(
    context_schema: SchemaLike,
    middlewares: Sequence["Middleware"],
    state_schema: SchemaLike = None,
) -> MergedSchemas:
    """Merge the agent's and its middlewares' schemas.

    Args:
        context_schema: The agent's own context schema
        middlewares: Middlewares in configured order
        state_schema: The agent's own state schema, merged before middlewares

    Returns:
        MergedSchemas for the configuration

    Raises:
        DuplicateContextFieldError: If any context field name repeats
    """
    # Context: unique names, collect every collision before failing
    context_fields: List[FieldSpec] = []
    seen: Dict[str, str] = {}
    duplicates: List[str] = []

    sources: List[Tuple[str, Sequence[FieldSpec]]] = [("agent", normalize_schema(context_schema))]
    sources.extend((mw.name, mw.context_schema) for mw in middlewares)

    for owner, specs in sources:
        for spec in specs:
            if spec.name in seen:
                logger.debug(
                    "Context field %r declared by %s already declared by %s",
                    spec.name,
                    owner,
                    seen[spec.name],
                )
                if spec.name not in duplicates:
                    duplicates.append(spec.name)
                continue
            seen[spec.name] = owner
            context_fields.append(spec)

    if duplicates:
        raise DuplicateContextFieldError(duplicates)

    # State: last declaration wins, position of first declaration is kept
    merged_state: Dict[str, FieldSpec] = {MESSAGES_FIELD.name: MESSAGES_FIELD}
    for spec in normalize_schema(state_schema):
        merged_state[spec.name] = spec
    for mw in middlewares:
        for spec in mw.state_schema:
            merged_state[spec.name] = spec

    return MergedSchemas(
        state_fields=tuple(merged_state.values()),
        context_fields=tuple(context_fields),
    )
