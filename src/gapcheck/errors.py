"""Error taxonomy shared by the store, resolver and service layers."""

from __future__ import annotations

from pathlib import Path


class GapcheckError(Exception):
    """Base class for all gapcheck errors."""


class NotFoundError(GapcheckError):
    """An entity id has no backing record."""

    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind} {entity_id} not found")
        self.kind = kind
        self.entity_id = entity_id


class ValidationError(GapcheckError):
    """Caller input was rejected before anything was written."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or [message]


class CorruptRecordError(GapcheckError):
    """A stored record could not be decoded."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Corrupt record {path}: {reason}")
        self.path = path
        self.reason = reason
