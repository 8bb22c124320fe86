"""Upload pipeline for archiving invoices to Google Drive.

Public API
----------
.. autoclass:: DriveClient
.. autoclass:: RetryExecutor
.. autoclass:: RetryPolicy
.. autoclass:: UploadPipeline
.. autoclass:: StorageStatusStore
.. autoclass:: BulkRetryCoordinator
.. autoclass:: StorageService
.. autoclass:: FileArtifactSource
.. autofunction:: classify
.. autofunction:: derive_name
.. autofunction:: resolve_conflict
"""

from invoicedrive.upload.bulk import BulkRetryCoordinator
from invoicedrive.upload.client import DriveClient, DriveFile
from invoicedrive.upload.errors import (
    ClassifiedError,
    ErrorGuidance,
    ErrorKind,
    classify,
    describe_error,
)
from invoicedrive.upload.exceptions import (
    ArtifactUnavailableError,
    InvalidTransitionError,
    RecordExistsError,
    RecordNotFoundError,
    StorageDisabledError,
    StorageError,
)
from invoicedrive.upload.naming import derive_name, resolve_conflict, sanitize_component
from invoicedrive.upload.pipeline import UploadPipeline
from invoicedrive.upload.retry import RetryEvent, RetryExecutor, RetryPolicy
from invoicedrive.upload.service import StorageService
from invoicedrive.upload.source import ArtifactSource, FileArtifactSource
from invoicedrive.upload.state import StorageStatusStore

__all__ = [
    "ArtifactSource",
    "ArtifactUnavailableError",
    "BulkRetryCoordinator",
    "ClassifiedError",
    "DriveClient",
    "DriveFile",
    "ErrorGuidance",
    "ErrorKind",
    "FileArtifactSource",
    "InvalidTransitionError",
    "RecordExistsError",
    "RecordNotFoundError",
    "RetryEvent",
    "RetryExecutor",
    "RetryPolicy",
    "StorageDisabledError",
    "StorageError",
    "StorageService",
    "StorageStatusStore",
    "UploadPipeline",
    "classify",
    "derive_name",
    "describe_error",
    "resolve_conflict",
    "sanitize_component",
]
