"""Structured results for admin-facing operations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from uuid import UUID


@dataclass
class ActionResult:
    """Outcome of an admin operation.

    Admin operations never raise to the caller; failures carry a
    human-readable ``error``.
    """

    success: bool
    error: str | None = None
    data: Any = None

    @classmethod
    def ok(cls, data: Any = None) -> ActionResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> ActionResult:
        return cls(success=False, error=error)


@dataclass(frozen=True)
class Actor:
    """The operator performing an admin action."""

    user_id: UUID
    name: str | None = None
