"""Shared pytest fixtures for invoice archival tests.

Provides an in-memory Drive double with scripted failures, a temporary
status store, a spooled artifact source, and retry executors that record
their backoff delays instead of sleeping.
"""

from __future__ import annotations

import itertools
from collections import Counter
from datetime import date
from pathlib import Path

import httpx
import pytest

from invoicedrive.models import ArtifactMetadata, StorageConfig
from invoicedrive.upload.client import FOLDER_MIME_TYPE, DriveFile
from invoicedrive.upload.retry import RetryExecutor, RetryPolicy
from invoicedrive.upload.source import FileArtifactSource
from invoicedrive.upload.state import StorageStatusStore


def http_error(status: int, message: str = "", body: str = "") -> httpx.HTTPStatusError:
    """Build the error httpx raises for a non-2xx Drive response."""
    request = httpx.Request("POST", "https://www.googleapis.com/upload/drive/v3/files")
    response = httpx.Response(status, request=request, text=body)
    return httpx.HTTPStatusError(message or f"HTTP {status}", request=request, response=response)


class FakeDrive:
    """In-memory stand-in for :class:`DriveClient`.

    ``create_file_errors`` / ``list_errors`` are consumed one entry per call;
    ``None`` entries mean "succeed this time".
    """

    def __init__(self) -> None:
        self.folders: list[DriveFile] = []
        self.files: list[DriveFile] = []
        self.calls: Counter[str] = Counter()
        self.create_file_errors: list[BaseException | None] = []
        self.list_errors: list[BaseException | None] = []
        self.uploaded_to: list[str] = []
        self._ids = itertools.count(1)

    def add_folder(self, name: str, parent_id: str | None = None) -> str:
        folder = DriveFile(f"folder-{next(self._ids)}", name, FOLDER_MIME_TYPE, parent_id)
        self.folders.append(folder)
        return folder.id

    def add_file(self, parent_id: str, name: str) -> str:
        f = DriveFile(f"file-{next(self._ids)}", name, "application/pdf", parent_id)
        self.files.append(f)
        return f.id

    def delete_folder(self, folder_id: str) -> None:
        self.folders = [f for f in self.folders if f.id != folder_id]

    async def list_files(
        self,
        name: str | None = None,
        parent_id: str | None = None,
        exclude_trashed: bool = True,
        folders_only: bool = False,
    ) -> list[DriveFile]:
        self.calls["list_files"] += 1
        if self.list_errors:
            error = self.list_errors.pop(0)
            if error is not None:
                raise error
        pool = self.folders if folders_only else self.folders + self.files
        return [
            f
            for f in pool
            if (name is None or f.name == name)
            and (parent_id is None or f.parent_id == parent_id)
        ]

    async def create_folder(self, name: str, parent_id: str | None = None) -> str:
        self.calls["create_folder"] += 1
        return self.add_folder(name, parent_id)

    async def create_file(
        self,
        parent_id: str,
        name: str,
        data: bytes,
        mime_type: str = "application/pdf",
    ) -> str:
        self.calls["create_file"] += 1
        self.uploaded_to.append(parent_id)
        if self.create_file_errors:
            error = self.create_file_errors.pop(0)
            if error is not None:
                raise error
        if not any(f.id == parent_id for f in self.folders):
            raise http_error(404, f"File not found: {parent_id}")
        return self.add_file(parent_id, name)


class RecordingSleep:
    """Awaitable sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# ======================================================================
# Fixtures
# ======================================================================


@pytest.fixture
def drive() -> FakeDrive:
    return FakeDrive()


@pytest.fixture
def make_http_error():
    """Factory for ``httpx.HTTPStatusError`` instances."""
    return http_error


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def executor_factory(sleeper: RecordingSleep):
    """Build RetryExecutors that never actually sleep (jitter pinned to 0.5)."""

    def _factory(policy: RetryPolicy) -> RetryExecutor:
        return RetryExecutor(policy, sleep=sleeper, jitter=lambda: 0.5)

    return _factory


@pytest.fixture
def storage_config(tmp_path: Path) -> StorageConfig:
    return StorageConfig(
        db_path=str(tmp_path / "storage.db"),
        artifact_dir=str(tmp_path / "artifacts"),
    )


@pytest.fixture
def metadata() -> ArtifactMetadata:
    return ArtifactMetadata(
        document_number="INV-001",
        party_name="Acme Corp",
        date=date(2024, 1, 15),
        is_recurring=False,
    )


@pytest.fixture
async def store(tmp_path: Path):
    """Connected StorageStatusStore on a temp database."""
    s = StorageStatusStore(str(tmp_path / "storage.db"))
    await s.connect()
    yield s
    await s.close()


@pytest.fixture
def source(tmp_path: Path) -> FileArtifactSource:
    return FileArtifactSource(tmp_path / "artifacts")
