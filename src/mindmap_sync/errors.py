"""Typed errors raised by the store adapters and the generation boundary.

Link divergence (a one-sided or stale ``featureId``/``node_id`` link) is
not an error: the reconciliation passes repair it and flag the affected
``SyncResult`` with ``divergence=True``.
"""

from __future__ import annotations


class MindmapSyncError(Exception):
    """Base class for every error this package raises on purpose."""


class NotFoundError(MindmapSyncError):
    """A referenced mindmap, feature or project does not exist.

    Callers that look documents up by project treat this as the empty
    state; the store adapters only raise it for lookups by id.
    """

    def __init__(self, entity: str, key: str) -> None:
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} '{key}' not found")


class TransportError(MindmapSyncError):
    """A backend call failed.

    Writes are all-or-nothing per call, so local state is never corrupted
    and the operation can always be retried.
    """

    retryable = True

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class GenerationValidationError(MindmapSyncError):
    """A generation-service response failed validation.

    Raised before anything is written, so a rejected response never leaves
    partial rows behind.
    """

    def __init__(
        self,
        message: str,
        missing_keys: list[str] | None = None,
        problems: list[str] | None = None,
    ) -> None:
        self.missing_keys = missing_keys or []
        self.problems = problems or []
        super().__init__(message)
