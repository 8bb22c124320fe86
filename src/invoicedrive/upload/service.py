"""Operator-facing storage service.

Glues the upload pipeline, status store and artifact source together:

  * :meth:`StorageService.archive` -- upstream entry called after an invoice
    is generated.  Spools the bytes, creates the ``pending`` record, uploads
    when auto-upload is on and records the outcome.
  * :meth:`StorageService.retry` -- manual re-drive of one artifact.
  * :meth:`StorageService.bulk_retry` -- bounded-concurrency re-drive of many.

Every status change goes through :func:`~invoicedrive.upload.fsm.next_status`
before it is written, and each significant step appends an activity event.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Callable

from invoicedrive.models import (
    ArtifactMetadata,
    BulkRetrySummary,
    StorageConfig,
    StorageStatus,
    StorageStatusRecord,
    UploadResult,
    utc_now,
)
from invoicedrive.upload.bulk import BulkRetryCoordinator
from invoicedrive.upload.errors import ErrorKind, classify
from invoicedrive.upload.exceptions import (
    ArtifactUnavailableError,
    InvalidTransitionError,
    RecordNotFoundError,
    StorageDisabledError,
)
from invoicedrive.upload.fsm import next_status

if TYPE_CHECKING:
    from invoicedrive.upload.pipeline import UploadPipeline
    from invoicedrive.upload.source import ArtifactSource
    from invoicedrive.upload.state import StorageStatusStore

logger = logging.getLogger(__name__)

# Activity log event names
UPLOAD_SUCCESS = "upload_success"
UPLOAD_FAILED = "upload_failed"
UPLOAD_ERROR = "upload_error"
UPLOAD_SKIPPED = "upload_skipped"
RETRY_INITIATED = "retry_initiated"
RETRY_SUCCESS = "retry_success"
RETRY_FAILED = "retry_failed"


class StorageService:
    """Archive invoices to Drive and manage their storage status.

    Args:
        pipeline: Upload pipeline bound to a Drive client.
        store: Connected status store.
        source: Durable artifact source used by retries.
        config_provider: Returns the current :class:`StorageConfig`.
    """

    def __init__(
        self,
        pipeline: UploadPipeline,
        store: StorageStatusStore,
        source: ArtifactSource,
        config_provider: Callable[[], StorageConfig],
    ) -> None:
        self._pipeline = pipeline
        self._store = store
        self._source = source
        self._config_provider = config_provider
        # One in-flight upload per artifact
        self._locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Upstream entry
    # ------------------------------------------------------------------

    async def archive(
        self,
        artifact_id: str,
        data: bytes,
        metadata: ArtifactMetadata,
    ) -> UploadResult:
        """Store a freshly generated invoice.

        Never raises: bookkeeping failures are logged and reported through
        the returned :class:`UploadResult` so document generation is never
        blocked by archival.  Once the pipeline reports a result, that result
        is returned even if recording it fails.
        """
        async with self._lock_for(artifact_id):
            return await self._archive(artifact_id, data, metadata)

    async def _archive(
        self,
        artifact_id: str,
        data: bytes,
        metadata: ArtifactMetadata,
    ) -> UploadResult:
        try:
            config = self._config_provider()
            await self._source.save(artifact_id, data, metadata)
            record = await self._store.ensure_pending(artifact_id)

            if record.status == StorageStatus.STORED:
                logger.info("%s already stored as %s", artifact_id, record.remote_object_id)
                return UploadResult(success=True, remote_object_id=record.remote_object_id)
            if record.status != StorageStatus.PENDING:
                return UploadResult(
                    success=False,
                    error=f"{artifact_id} is {record.status.value}; use retry to re-upload",
                    retry_count=0,
                )

            if not config.enabled:
                await self._record_outcome(record, UploadResult(success=True))
                return UploadResult(success=True)

            if not config.auto_upload:
                logger.info("Auto-upload off, %s left pending", artifact_id)
                return UploadResult(success=True)

            result = await self._pipeline.upload(data, metadata)
        except Exception as exc:
            error = classify(exc)
            logger.error("Archiving %s failed: %s", artifact_id, error.message, exc_info=True)
            await self._safe_activity(artifact_id, UPLOAD_ERROR, {"error": error.message})
            return UploadResult(
                success=False, error=error.message, retry_count=0, error_kind=error.kind.value
            )

        try:
            await self._record_outcome(record, result)
        except Exception as exc:
            logger.error(
                "Recording the upload outcome of %s failed: %s", artifact_id, exc, exc_info=True
            )
            await self._safe_activity(
                artifact_id,
                UPLOAD_ERROR,
                {"error": str(exc), "remote_object_id": result.remote_object_id},
            )
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_status(self, artifact_id: str) -> StorageStatusRecord:
        """Return the record for *artifact_id*.

        Raises:
            RecordNotFoundError: If no record exists.
        """
        record = await self._store.get(artifact_id)
        if record is None:
            raise RecordNotFoundError(artifact_id)
        return record

    async def get_statuses(self, artifact_ids: list[str]) -> list[StorageStatusRecord]:
        return await self._store.get_many(artifact_ids)

    async def list_by_status(self, status: StorageStatus | str) -> list[StorageStatusRecord]:
        return await self._store.list_by_status(status)

    async def activity(self, artifact_id: str) -> list[dict]:
        return await self._store.list_activity(artifact_id)

    # ------------------------------------------------------------------
    # Retries
    # ------------------------------------------------------------------

    async def retry(self, artifact_id: str) -> UploadResult:
        """Re-upload one artifact from its durable copy.

        Concurrent calls for the same artifact run one after another, so the
        second sees the first one's outcome.

        Returns:
            The pipeline result; the record is updated to ``stored`` or
            ``failed`` accordingly.

        Raises:
            RecordNotFoundError: Unknown artifact.
            InvalidTransitionError: Record is ``stored`` or ``disabled``.
            StorageDisabledError: Storage is switched off.
        """
        async with self._lock_for(artifact_id):
            return await self._retry(artifact_id)

    async def _retry(self, artifact_id: str) -> UploadResult:
        record = await self.get_status(artifact_id)
        if record.status in (StorageStatus.STORED, StorageStatus.DISABLED):
            raise InvalidTransitionError(
                f"{artifact_id} is {record.status.value}; only failed uploads can be retried"
            )

        config = self._config_provider()
        if not config.enabled:
            raise StorageDisabledError("Google Drive storage is disabled")

        if record.status == StorageStatus.FAILED:
            next_status(record.status, StorageStatus.PENDING)

        await self._store.increment_retry_count(artifact_id)
        record = await self._store.update(
            artifact_id, status=StorageStatus.PENDING, error_message=None
        )
        if record is None:
            raise RecordNotFoundError(artifact_id)
        await self._store.record_activity(
            artifact_id, RETRY_INITIATED, {"retry_count": record.retry_count}
        )
        logger.info("Retrying %s (retry #%d)", artifact_id, record.retry_count)

        try:
            data, metadata = await self._source.fetch(artifact_id)
        except ArtifactUnavailableError as exc:
            result = UploadResult(
                success=False,
                error=f"{ErrorKind.VALIDATION.value} error: {exc}",
                retry_count=0,
                error_kind=ErrorKind.VALIDATION.value,
            )
        else:
            result = await self._pipeline.upload(data, metadata)

        await self._record_outcome(record, result, retry=True)
        return result

    async def bulk_retry(self, artifact_ids: list[str]) -> BulkRetrySummary:
        """Retry many failed artifacts; see :class:`BulkRetryCoordinator`.

        Raises:
            ValueError: If the batch exceeds ``bulk_max_items``.
        """
        config = self._config_provider()
        coordinator = BulkRetryCoordinator(
            self._store,
            self.retry,
            max_concurrency=config.bulk_concurrency,
            max_items=config.bulk_max_items,
        )
        return await coordinator.retry_all(artifact_ids)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_for(self, artifact_id: str) -> asyncio.Lock:
        return self._locks.setdefault(artifact_id, asyncio.Lock())

    async def _record_outcome(
        self,
        record: StorageStatusRecord,
        result: UploadResult,
        *,
        retry: bool = False,
    ) -> None:
        artifact_id = record.artifact_id
        now = utc_now()

        if result.skipped:
            target = next_status(record.status, StorageStatus.DISABLED)
            await self._store.update(artifact_id, status=target, last_attempt_at=now)
            await self._store.record_activity(artifact_id, UPLOAD_SKIPPED, {})
            return

        if result.success:
            target = next_status(record.status, StorageStatus.STORED)
            await self._store.update(
                artifact_id,
                status=target,
                remote_object_id=result.remote_object_id,
                uploaded_at=now,
                last_attempt_at=now,
                error_message=None,
            )
            await self._store.record_activity(
                artifact_id,
                RETRY_SUCCESS if retry else UPLOAD_SUCCESS,
                {"remote_object_id": result.remote_object_id, "file_name": result.file_name},
            )
            return

        target = next_status(record.status, StorageStatus.FAILED)
        await self._store.update(
            artifact_id,
            status=target,
            error_message=result.error or "Unknown error: upload failed",
            last_attempt_at=now,
        )
        await self._store.record_activity(
            artifact_id,
            RETRY_FAILED if retry else UPLOAD_FAILED,
            {
                "error": result.error,
                "error_kind": result.error_kind,
                "attempt_retries": result.retry_count,
            },
        )

    async def _safe_activity(self, artifact_id: str, event: str, details: dict) -> None:
        try:
            await self._store.record_activity(artifact_id, event, details)
        except Exception:
            logger.debug("Could not record %s for %s", event, artifact_id, exc_info=True)
