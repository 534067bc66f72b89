from __future__ import annotations

from typing import Optional


class StagehandError(Exception):
    """Base class for engine errors."""


class PlaybookError(StagehandError, ValueError):
    """Raised when a playbook or inventory cannot be loaded."""

    def __init__(self, message: str, play: Optional[int] = None, task: Optional[int] = None):
        location = ""
        if play is not None:
            location = f"play {play}"
            if task is not None:
                location = f"{location}, task {task}"
            location = f"{location}: "
        super().__init__(f"{location}{message}")
        self.play = play
        self.task = task


class UnresolvedReferenceError(StagehandError):
    """A template or fact reference had no value to resolve to."""

    def __init__(self, reference: str, detail: Optional[str] = None):
        message = f"unresolved reference '{reference}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.reference = reference


class FactConflictError(StagehandError):
    """A run-scoped fact was captured twice with different values."""


class OperationError(StagehandError):
    """A resource operation could not reach its desired state."""
