"""
car_fetch/result.py

Result values for extractor backend outcomes.

Error Handling Convention:
--------------------------
1. **Exceptions** (car_fetch.exceptions) are raised for conditions that end the
   run: network failures, job failures, malformed containers, exhausted
   extractors.

2. **Result values** (this module) are returned where the caller decides what
   happens next. Extractor backends return them so the orchestrator can fall
   through to the next backend or attempt a repair.

Usage:
------
    from car_fetch.result import Ok, Err

    outcome = backend.extract(path, out_dir)
    if outcome.is_ok:
        ...
    elif outcome.error == "zero_length_section":
        ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    """
    Either success (Ok) or failure (Err).

    Attributes:
        status: "ok" for success, "error" for failure
        value: The success value (only meaningful when status="ok")
        error: Error code (only meaningful when status="error")
        message: Human-readable error message
        extras: Additional context (backend, returncode, ...)
    """

    status: str
    value: T | None = None
    error: str | None = None
    message: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def is_ok(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dict for logging and error context."""
        d: dict[str, Any] = {"status": self.status}
        if self.status == "ok":
            if self.value is not None:
                d["value"] = str(self.value)
        else:
            if self.error:
                d["error"] = self.error
            if self.message:
                d["message"] = self.message
        d.update(self.extras)
        return d


def Ok(value: T = None, **extras: Any) -> Result[T]:  # noqa: N802 - intentional PascalCase
    """Create a successful result."""
    return Result(status="ok", value=value, extras=extras)


def Err(error: str, message: str | None = None, **extras: Any) -> Result[Any]:  # noqa: N802
    """Create a failure result."""
    return Result(status="error", error=error, message=message, extras=extras)
