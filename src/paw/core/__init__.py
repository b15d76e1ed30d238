"""Core domain models, adapters, and lifecycle services."""

from paw.core.models import enums, task

__all__ = [
    "enums",
    "task",
]
