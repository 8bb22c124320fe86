"""Data models and enums for invoice archival to Google Drive."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from enum import Enum


def utc_now() -> datetime:
    """Current instant as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class StorageStatus(str, Enum):
    """Lifecycle status of an archived artifact."""

    PENDING = "pending"
    STORED = "stored"
    FAILED = "failed"
    DISABLED = "disabled"


@dataclass(frozen=True, slots=True)
class ArtifactMetadata:
    """Naming metadata supplied by the caller for each upload attempt."""

    document_number: str
    party_name: str
    date: date
    is_recurring: bool = False
    recurrence_descriptor: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Convert to a JSON-friendly dictionary."""
        d = asdict(self)
        d["date"] = self.date.isoformat()
        return d

    @classmethod
    def from_dict(cls, data: dict) -> ArtifactMetadata:
        """Inverse of :meth:`to_dict`."""
        raw_date = data["date"]
        if isinstance(raw_date, str):
            raw_date = date.fromisoformat(raw_date[:10])
        return cls(
            document_number=str(data["document_number"]),
            party_name=str(data["party_name"]),
            date=raw_date,
            is_recurring=bool(data.get("is_recurring", False)),
            recurrence_descriptor=data.get("recurrence_descriptor") or None,
        )


@dataclass(slots=True)
class StorageStatusRecord:
    """Persistent per-artifact lifecycle entry.

    Invariants:
        * ``status == STORED`` implies ``remote_object_id`` is set and
          ``error_message`` is absent.
        * ``status == FAILED`` implies ``error_message`` is set.
        * ``retry_count >= 0``.
    """

    artifact_id: str
    status: StorageStatus = StorageStatus.PENDING
    remote_object_id: str | None = None
    uploaded_at: datetime | None = None
    last_attempt_at: datetime | None = None
    retry_count: int = 0
    error_message: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def check_invariants(self) -> None:
        """Raise ``ValueError`` if the record violates a lifecycle invariant."""
        if not self.artifact_id:
            raise ValueError("artifact_id must not be empty")
        if self.retry_count < 0:
            raise ValueError(f"retry_count must be >= 0, got {self.retry_count}")
        if self.status == StorageStatus.STORED:
            if not self.remote_object_id:
                raise ValueError(
                    f"{self.artifact_id}: stored record requires remote_object_id"
                )
            if self.error_message:
                raise ValueError(
                    f"{self.artifact_id}: stored record must not carry an error message"
                )
        if self.status == StorageStatus.FAILED and not self.error_message:
            raise ValueError(f"{self.artifact_id}: failed record requires error_message")

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary with enum values and ISO timestamps."""
        d = asdict(self)
        d["status"] = self.status.value
        for key in ("uploaded_at", "last_attempt_at", "created_at", "updated_at"):
            value = d[key]
            d[key] = value.isoformat() if value is not None else None
        return d


@dataclass(slots=True)
class UploadResult:
    """Outcome of a single :meth:`UploadPipeline.upload` call.

    ``success`` with no ``remote_object_id`` means storage was disabled and
    no remote call was made.
    """

    success: bool
    remote_object_id: str | None = None
    file_name: str | None = None
    error: str | None = None
    retry_count: int | None = None
    error_kind: str | None = None

    @property
    def skipped(self) -> bool:
        return self.success and self.remote_object_id is None


@dataclass(slots=True)
class BulkRetryItem:
    """Per-artifact line of a bulk retry report."""

    artifact_id: str
    success: bool
    error: str | None = None


@dataclass
class BulkRetrySummary:
    """Aggregate outcome of :meth:`BulkRetryCoordinator.retry_all`."""

    successful: int = 0
    failed: int = 0
    total: int = 0
    results: list[BulkRetryItem] = field(default_factory=list)


@dataclass
class StorageConfig:
    """Configuration for invoice archival.

    Controls the enable/auto-upload switches, the target Drive folder,
    retry/backoff tuning, per-request timeouts and bulk retry limits.  The
    Drive access token is not part of it; see
    :func:`invoicedrive.config.get_access_token`.
    """

    enabled: bool = True
    auto_upload: bool = True
    folder_name: str = "Invoices"
    parent_folder_id: str | None = None
    file_extension: str = ".pdf"
    mime_type: str = "application/pdf"
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 8.0
    backoff_multiplier: float = 2.0
    request_timeout: float = 30.0
    bulk_concurrency: int = 3
    bulk_max_items: int = 50
    db_path: str = "data/storage.db"
    artifact_dir: str = "data/artifacts"
