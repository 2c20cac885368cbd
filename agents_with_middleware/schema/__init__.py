"""Schema package: field specifications and the schema composer."""

from agents_with_middleware.schema.fields import (
    MISSING,
    Diagnostic,
    FieldSpec,
    FieldValidationError,
    fields_from_model,
    normalize_schema,
)
from agents_with_middleware.schema.composer import MESSAGES_FIELD, MergedSchemas, compose

__all__ = [
    "MISSING",
    "Diagnostic",
    "FieldSpec",
    "FieldValidationError",
    "fields_from_model",
    "normalize_schema",
    "MESSAGES_FIELD",
    "MergedSchemas",
    "compose",
]
