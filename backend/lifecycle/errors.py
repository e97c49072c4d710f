"""
Account lifecycle error taxonomy.

Every error carries a stable ``kind`` used by ``Result`` and the HTTP layer.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


class LifecycleError(Exception):
    """Base class for errors surfaced by the lifecycle services."""

    kind = "lifecycle_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        data = {"kind": self.kind, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


class ValidationError(LifecycleError):
    """Missing identity or email. Raised before any mutation."""
    kind = "validation_error"


class NotFoundError(LifecycleError):
    """Nothing references the identity or email anywhere."""
    kind = "not_found"


class PersistenceError(LifecycleError):
    """Storage unavailable or a statement failed. Callers own retries."""
    kind = "persistence_error"


class SchemaMismatchError(LifecycleError):
    """Database or deletion registry does not match the schema descriptor."""
    kind = "schema_mismatch"


@dataclass(frozen=True)
class ImmutableFieldConflict:
    """
    An update tried to change an immutable field that is already set.

    Not an error: the field is left out of the write and the conflict is
    reported alongside the result.
    """
    field: str
    stored_value: Any
    attempted_value: Any

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "stored_value": self.stored_value,
            "attempted_value": self.attempted_value,
        }


def require(value: Optional[str], parameter: str) -> str:
    """Return ``value`` stripped, or raise ValidationError when blank."""
    if value is None or not str(value).strip():
        raise ValidationError(f"{parameter} is required", details={"parameter": parameter})
    return str(value).strip()


def normalize_email(email: Optional[str]) -> str:
    return require(email, "email").lower()
