"""Typed failures raised by the library.

The CLI turns any TaskGraphError into an ``{"error": ...}`` payload.
"""

from __future__ import annotations


class TaskGraphError(Exception):
    """Base class for every error the library raises on purpose."""


class NotFoundError(TaskGraphError):
    """Unknown item, edge, label, learning, template or backup."""


class ValidationError(TaskGraphError):
    """Bad input, detected before anything is written."""


class ConflictError(TaskGraphError):
    """The request is valid but the current state refuses it."""

    def __init__(self, message: str, owner: str | None = None):
        super().__init__(message)
        self.owner = owner


class StorageError(TaskGraphError):
    """Underlying sqlite failure (I/O, lock timeout, constraint)."""
