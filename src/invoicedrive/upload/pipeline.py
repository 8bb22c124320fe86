"""Single-invoice upload pipeline.

Steps for each :meth:`UploadPipeline.upload` call:

  1. Read the current :class:`~invoicedrive.models.StorageConfig`; if
     storage is disabled return success without touching Drive.
  2. Resolve the target folder (find by name under parent, else create).
  3. Derive the canonical file name.
  4. Resolve name conflicts inside the folder.
  5. Upload the bytes.

Steps 2, 4 and 5 run inside the retried operation, so every retry
re-resolves the folder.  A NotFound failure (folder deleted mid-flight)
therefore lands in a freshly resolved or recreated folder instead of
resubmitting to the stale id.

The pipeline never raises into its caller: all failures come back as an
``UploadResult`` with ``success=False``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from invoicedrive.models import ArtifactMetadata, StorageConfig, UploadResult
from invoicedrive.upload.errors import ClassifiedError, classify
from invoicedrive.upload.naming import derive_name, resolve_conflict
from invoicedrive.upload.retry import RetryEvent, RetryExecutor, RetryPolicy

if TYPE_CHECKING:
    from invoicedrive.upload.client import DriveClient

logger = logging.getLogger(__name__)

UPLOAD_OPERATION = "upload_invoice"


class UploadPipeline:
    """Upload one rendered invoice to Drive with retries.

    Usage::

        async with DriveClient(token) as drive:
            pipeline = UploadPipeline(drive, config_provider("config/storage_config.json"))
            result = await pipeline.upload(pdf_bytes, metadata)

    Args:
        client: Drive client bound to the caller's credentials.
        config_provider: Zero-argument callable returning the current
            configuration.  Called once per upload.
        executor_factory: Builds the :class:`RetryExecutor` for a policy.
            Defaults to a real executor (``asyncio.sleep`` backoff).
        on_retry: Optional observer forwarded to the executor.
    """

    def __init__(
        self,
        client: DriveClient,
        config_provider: Callable[[], StorageConfig],
        *,
        executor_factory: Callable[[RetryPolicy], RetryExecutor] | None = None,
        on_retry: Callable[[RetryEvent], None] | None = None,
    ) -> None:
        self._client = client
        self._config_provider = config_provider
        self._on_retry = on_retry
        self._executor_factory = executor_factory or self._default_executor

    def _default_executor(self, policy: RetryPolicy) -> RetryExecutor:
        return RetryExecutor(policy, on_retry=self._on_retry)

    async def resolve_container(self, config: StorageConfig) -> str:
        """Find the configured folder by name under its parent, creating it if absent."""
        matches = await self._client.list_files(
            name=config.folder_name,
            parent_id=config.parent_folder_id,
            exclude_trashed=True,
            folders_only=True,
        )
        for folder in matches:
            if folder.name == config.folder_name:
                return folder.id
        logger.info(
            "Folder %r not found under %s, creating it",
            config.folder_name,
            config.parent_folder_id or "root",
        )
        return await self._client.create_folder(config.folder_name, config.parent_folder_id)

    async def upload(self, data: bytes, metadata: ArtifactMetadata) -> UploadResult:
        """Upload *data* named from *metadata*.

        Returns:
            ``UploadResult(success=True)`` when storage is disabled,
            ``UploadResult(success=True, remote_object_id=..., file_name=...)``
            on upload, or ``UploadResult(success=False, error=..., retry_count=...)``
            when retries are exhausted or the error is terminal.
        """
        try:
            config = self._config_provider()
        except Exception as exc:
            error = classify(exc)
            logger.error("Could not load storage configuration: %s", error.message)
            return UploadResult(
                success=False, error=error.message, retry_count=0, error_kind=error.kind.value
            )

        if not config.enabled:
            logger.info(
                "Drive storage disabled, skipping upload of invoice %s",
                metadata.document_number,
            )
            return UploadResult(success=True)

        try:
            candidate = derive_name(metadata, config.file_extension)
        except Exception as exc:
            error = classify(exc)
            return UploadResult(
                success=False, error=error.message, retry_count=0, error_kind=error.kind.value
            )

        async def _attempt() -> tuple[str, str]:
            folder_id = await self.resolve_container(config)
            final_name = await resolve_conflict(
                self._client, folder_id, candidate, extension=config.file_extension
            )
            file_id = await self._client.create_file(
                folder_id, final_name, data, mime_type=config.mime_type
            )
            return file_id, final_name

        executor = self._executor_factory(RetryPolicy.from_config(config))
        try:
            file_id, final_name = await executor.execute_with_retry(_attempt, UPLOAD_OPERATION)
        except ClassifiedError as error:
            logger.warning(
                "Upload of invoice %s failed after %d attempt(s): %s",
                metadata.document_number,
                error.attempts,
                error.message,
            )
            return UploadResult(
                success=False,
                error=error.message,
                retry_count=max(0, error.attempts - 1),
                error_kind=error.kind.value,
            )

        logger.info("Uploaded invoice %s as %s (%s)", metadata.document_number, final_name, file_id)
        return UploadResult(success=True, remote_object_id=file_id, file_name=final_name)
