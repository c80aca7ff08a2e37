"""Exceptions raised by the tasklens engine."""

from __future__ import annotations

from typing import Optional


class TaskLensError(Exception):
    """Base class for engine errors."""


class TaskNotFoundError(TaskLensError, LookupError):
    """No checklist line carries the requested identifier."""

    def __init__(self, task_id: str, document: Optional[str] = None):
        super().__init__(f"Task '{task_id}' not found.")
        self.task_id = task_id
        self.document = document


class NotALeafError(TaskLensError, ValueError):
    """A leaf-only operation was addressed to a container task."""

    def __init__(self, task_id: str, status: str = "failed"):
        super().__init__(f"Task '{task_id}' has sub-tasks and cannot be marked as a {status} leaf.")
        self.task_id = task_id
        self.status = status


class ConflictError(TaskLensError):
    """The document changed since the caller last read it."""

    def __init__(self, expected_digest: str, actual_digest: str):
        super().__init__(
            f"Document changed since it was read (expected digest {expected_digest[:12]}, "
            f"found {actual_digest[:12]}). Re-read the document and retry."
        )
        self.expected_digest = expected_digest
        self.actual_digest = actual_digest
