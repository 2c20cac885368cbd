"""Field specifications for state and context schemas.

A field is a name plus a validation/default capability. Validation is
delegated to pydantic (`TypeAdapter`), so any annotation pydantic understands
can be used: ``int``, ``Literal["a", "b"]``, ``Dict[str, int]``, nested
models, ``Annotated`` constraints, and so on.

Schemas can be written either as a sequence of `FieldSpec` or as a pydantic
model class, which is converted field by field with `fields_from_model`.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Annotated, Any, Callable, Dict, List, Optional, Sequence, Tuple, Type, Union

from pydantic import BaseModel, TypeAdapter, ValidationError


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


@dataclass(frozen=True)
class Diagnostic:
    """A single validation problem for one field."""
    field: str
    message: str


class FieldValidationError(ValueError):
    """Raised by `FieldSpec.validate` with one diagnostic per problem."""

    def __init__(self, diagnostics: Sequence[Diagnostic]):
        self.diagnostics = list(diagnostics)
        super().__init__("; ".join(f"{d.field}: {d.message}" for d in self.diagnostics))


@dataclass(frozen=True)
class FieldSpec:
    """A named, typed field with an optional default.

    Args:
        name: Field name in the state or context mapping
        annotation: Type the value must satisfy (validated by pydantic)
        default: Default value; deep-copied every time it is handed out
        default_factory: Zero-argument callable producing the default
        required: Whether callers must supply the field. Defaults to True
            exactly when no default is given.
        description: Free text for documentation
    """
    name: str
    annotation: Any = Any
    default: Any = MISSING
    default_factory: Optional[Callable[[], Any]] = None
    required: Optional[bool] = None
    description: Optional[str] = None
    _adapter: TypeAdapter = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.default is not MISSING and self.default_factory is not None:
            raise ValueError(f"Field '{self.name}' cannot set both default and default_factory")
        if self.required is None:
            object.__setattr__(self, "required", not self.has_default)
        object.__setattr__(self, "_adapter", TypeAdapter(self.annotation))

    @property
    def has_default(self) -> bool:
        return self.default is not MISSING or self.default_factory is not None

    def default_value(self) -> Any:
        """Return a fresh default value for this field."""
        if self.default_factory is not None:
            return self.default_factory()
        if self.default is MISSING:
            raise KeyError(f"Field '{self.name}' has no default")
        return copy.deepcopy(self.default)

    def validate(self, value: Any) -> Any:
        """Validate ``value`` and return the (possibly coerced) result.

        Raises:
            FieldValidationError: With one diagnostic per pydantic error
        """
        try:
            return self._adapter.validate_python(value)
        except ValidationError as e:
            raise FieldValidationError(
                [Diagnostic(self.name, _describe_error(self.name, err)) for err in e.errors()]
            ) from e


def _describe_error(name: str, error: Dict[str, Any]) -> str:
    loc = ".".join(str(part) for part in error.get("loc", ()))
    return f"{error['msg']} (at {name}.{loc})" if loc else error["msg"]


def fields_from_model(model: Type[BaseModel]) -> Tuple[FieldSpec, ...]:
    """Convert a pydantic model class into field specifications.

    Field constraints (``Field(gt=0)`` and friends) are carried over through
    ``Annotated`` metadata, and defaults/default factories are preserved.
    """
    specs: List[FieldSpec] = []
    for name, info in model.model_fields.items():
        annotation = info.annotation
        if info.metadata:
            annotation = Annotated[(annotation, *info.metadata)]

        kwargs: Dict[str, Any] = {"description": info.description}
        if info.default_factory is not None:
            kwargs["default_factory"] = info.default_factory
        elif not info.is_required():
            kwargs["default"] = info.default

        specs.append(FieldSpec(name, annotation, required=info.is_required(), **kwargs))
    return tuple(specs)


SchemaLike = Union[Sequence[FieldSpec], Type[BaseModel], None]


def normalize_schema(schema: SchemaLike) -> Tuple[FieldSpec, ...]:
    """Accept a pydantic model class, a sequence of FieldSpec, or None."""
    if schema is None:
        return ()
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return fields_from_model(schema)

    specs = tuple(schema)
    for spec in specs:
        if not isinstance(spec, FieldSpec):
            raise TypeError(
                f"Schema entries must be FieldSpec instances, got {type(spec).__name__}"
            )
    return specs
