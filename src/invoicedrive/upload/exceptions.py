"""Exceptions raised by the status store and operator service."""

from __future__ import annotations


class StorageError(Exception):
    """Base class for invoice storage bookkeeping errors."""


class RecordNotFoundError(StorageError):
    """No status record exists for the requested artifact."""

    def __init__(self, artifact_id: str) -> None:
        super().__init__(f"No storage status record for {artifact_id!r}")
        self.artifact_id = artifact_id


class RecordExistsError(StorageError):
    """A status record already exists for the artifact."""

    def __init__(self, artifact_id: str) -> None:
        super().__init__(f"Storage status record for {artifact_id!r} already exists")
        self.artifact_id = artifact_id


class InvalidTransitionError(StorageError):
    """The requested status change is not allowed by the lifecycle."""


class StorageDisabledError(StorageError):
    """Drive storage is switched off in the configuration."""


class ArtifactUnavailableError(StorageError):
    """The durable copy of an artifact could not be read."""
