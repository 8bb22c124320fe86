"""Bulk re-drive of failed invoice uploads.

Only records currently in ``failed`` are retried.  Uploads run concurrently
inside a small ``asyncio.Semaphore`` window so a bulk retry does not itself
provoke quota errors; each item still backs off through its own
:class:`~invoicedrive.upload.retry.RetryExecutor`.  A failure on one item,
whatever its kind, never stops the others.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from invoicedrive.models import (
    BulkRetryItem,
    BulkRetrySummary,
    StorageStatus,
    UploadResult,
)
from invoicedrive.upload.state import StorageStatusStore

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 3
DEFAULT_MAX_ITEMS = 50


class BulkRetryCoordinator:
    """Retry a list of failed artifacts with bounded concurrency.

    Args:
        store: Status store used to check each artifact is still failed.
        retry_one: Coroutine function that re-uploads one artifact and
            records the outcome (normally :meth:`StorageService.retry`).
        max_concurrency: Upload window size.
        max_items: Largest accepted batch.
    """

    def __init__(
        self,
        store: StorageStatusStore,
        retry_one: Callable[[str], Awaitable[UploadResult]],
        *,
        max_concurrency: int = DEFAULT_CONCURRENCY,
        max_items: int = DEFAULT_MAX_ITEMS,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._store = store
        self._retry_one = retry_one
        self._max_items = max_items
        self._semaphore = asyncio.Semaphore(max_concurrency)

    async def retry_all(self, artifact_ids: list[str]) -> BulkRetrySummary:
        """Retry every failed artifact in *artifact_ids*.

        Duplicate ids are retried once.  Ids that are unknown or not in
        ``failed`` count as failed items with a reason.  ``total`` is the
        number of distinct ids submitted.

        Raises:
            ValueError: If more than ``max_items`` ids are submitted.
        """
        ids = list(dict.fromkeys(artifact_ids))
        if len(ids) > self._max_items:
            raise ValueError(
                f"Cannot retry more than {self._max_items} artifacts at once "
                f"(got {len(ids)})"
            )

        summary = BulkRetrySummary(total=len(ids))
        if not ids:
            return summary

        logger.info("Bulk retry of %d artifact(s) started", len(ids))
        items = await asyncio.gather(*(self._process(aid) for aid in ids))

        for item in items:
            summary.results.append(item)
            if item.success:
                summary.successful += 1
            else:
                summary.failed += 1

        logger.info(
            "Bulk retry complete: %d succeeded, %d failed of %d total",
            summary.successful,
            summary.failed,
            summary.total,
        )
        return summary

    async def _process(self, artifact_id: str) -> BulkRetryItem:
        async with self._semaphore:
            try:
                record = await self._store.get(artifact_id)
                if record is None:
                    return BulkRetryItem(artifact_id, False, "Storage status not found")
                if record.status == StorageStatus.STORED:
                    return BulkRetryItem(artifact_id, False, "Already stored in Google Drive")
                if record.status != StorageStatus.FAILED:
                    return BulkRetryItem(
                        artifact_id, False, "Only failed uploads can be retried"
                    )

                result = await self._retry_one(artifact_id)
            except Exception as exc:
                logger.error("Bulk retry of %s raised: %s", artifact_id, exc, exc_info=True)
                return BulkRetryItem(artifact_id, False, str(exc) or type(exc).__name__)

        if result.success:
            return BulkRetryItem(artifact_id, True)
        return BulkRetryItem(artifact_id, False, result.error)
