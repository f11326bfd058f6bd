"""Exception hierarchy shared by every engine component."""

from __future__ import annotations

from typing import Any


class PressroomError(Exception):
    """Base exception for all engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class ValidationError(PressroomError, ValueError):
    """Rejected at submission. Nothing was written."""


class NotFoundError(PressroomError, LookupError):
    """Entity does not exist or is not owned by the caller."""


class ScheduleBusyError(PressroomError):
    """An execution for this schedule is already RUNNING."""


class CollaboratorError(PressroomError):
    """An external collaborator call failed."""

    def __init__(self, collaborator: str, message: str) -> None:
        super().__init__(f"{collaborator}: {message}", {"collaborator": collaborator})
        self.collaborator = collaborator


class CollaboratorTimeout(CollaboratorError):
    """An external collaborator call exceeded its timeout."""

    def __init__(self, collaborator: str, timeout_s: float) -> None:
        super().__init__(collaborator, f"timed out after {timeout_s:g}s")
        self.timeout_s = timeout_s
