"""Durable copies of generated invoices for later retries.

Retries never reuse bytes held in memory by the original request; they
re-read the artifact from an :class:`ArtifactSource`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Protocol

from invoicedrive.models import ArtifactMetadata
from invoicedrive.upload.exceptions import ArtifactUnavailableError

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"[^A-Za-z0-9._-]")


class ArtifactSource(Protocol):
    """Where retry flows fetch artifact bytes and naming metadata from."""

    async def save(self, artifact_id: str, data: bytes, metadata: ArtifactMetadata) -> None: ...

    async def fetch(self, artifact_id: str) -> tuple[bytes, ArtifactMetadata]: ...


class FileArtifactSource:
    """Spool artifacts to ``<root>/<id>.bin`` with a ``<id>.json`` sidecar.

    Blocking file I/O runs in a worker thread via :func:`asyncio.to_thread`.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _paths(self, artifact_id: str) -> tuple[Path, Path]:
        stem = _SAFE_ID.sub("_", artifact_id)
        if not stem or stem in {".", ".."}:
            raise ValueError(f"Unusable artifact id {artifact_id!r}")
        return self.root / f"{stem}.bin", self.root / f"{stem}.json"

    async def save(self, artifact_id: str, data: bytes, metadata: ArtifactMetadata) -> None:
        data_path, meta_path = self._paths(artifact_id)

        def _write() -> None:
            self.root.mkdir(parents=True, exist_ok=True)
            data_path.write_bytes(bytes(data))
            meta_path.write_text(
                json.dumps(
                    {"artifact_id": artifact_id, "metadata": metadata.to_dict()},
                    indent=2,
                ),
                encoding="utf-8",
            )

        await asyncio.to_thread(_write)
        logger.debug("Spooled %s (%d bytes) to %s", artifact_id, len(data), data_path)

    async def fetch(self, artifact_id: str) -> tuple[bytes, ArtifactMetadata]:
        data_path, meta_path = self._paths(artifact_id)

        def _read() -> tuple[bytes, ArtifactMetadata]:
            data = data_path.read_bytes()
            payload = json.loads(meta_path.read_text(encoding="utf-8"))
            return data, ArtifactMetadata.from_dict(payload["metadata"])

        try:
            return await asyncio.to_thread(_read)
        except FileNotFoundError as exc:
            raise ArtifactUnavailableError(
                f"No spooled copy of {artifact_id!r} under {self.root}"
            ) from exc
        except (KeyError, ValueError) as exc:
            raise ArtifactUnavailableError(
                f"Spooled metadata for {artifact_id!r} is unreadable: {exc}"
            ) from exc
