"""
Tagged result type shared by every lifecycle operation.

    {"ok": true,  "data": ...}
    {"ok": false, "error": {"kind": ..., "message": ...}}
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Generic, Optional, TypeVar

from .errors import LifecycleError

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    ok: bool
    data: Optional[T] = None
    error: Optional[LifecycleError] = None

    @classmethod
    def success(cls, data: T) -> "Result[T]":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: LifecycleError) -> "Result[T]":
        return cls(ok=False, error=error)

    @property
    def error_kind(self) -> Optional[str]:
        return self.error.kind if self.error else None

    def unwrap(self) -> T:
        """Return the data or re-raise the stored error."""
        if not self.ok:
            raise self.error
        return self.data

    def to_dict(self) -> Dict[str, Any]:
        if not self.ok:
            return {"ok": False, "error": self.error.to_dict()}
        data = self.data
        if hasattr(data, "to_dict"):
            data = data.to_dict()
        elif isinstance(data, list):
            data = [item.to_dict() if hasattr(item, "to_dict") else item for item in data]
        return {"ok": True, "data": data}


def row_to_dict(mapping) -> Dict[str, Any]:
    """Plain dict of a result row, datetimes as ISO strings."""
    return {k: v.isoformat() if isinstance(v, datetime) else v for k, v in dict(mapping).items()}
