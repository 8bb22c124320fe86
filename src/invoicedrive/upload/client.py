"""Google Drive v3 client for invoice archival.

Wraps the three Drive primitives the upload pipeline needs:

  1. ``create_folder`` -- create a folder under an optional parent
  2. ``list_files``    -- name/parent filtered listing, trashed excluded
  3. ``create_file``   -- multipart upload of the invoice bytes

One client is built per request with an injected OAuth access token; there
is no shared module-level client.  Non-2xx responses surface as
``httpx.HTTPStatusError`` and transport failures as ``httpx.TransportError``
so :func:`~invoicedrive.upload.errors.classify` can bucket them.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DRIVE_API_URL = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"


@dataclass(frozen=True, slots=True)
class DriveFile:
    """Minimal view of a Drive file or folder."""

    id: str
    name: str
    mime_type: str | None = None
    parent_id: str | None = None

    @property
    def is_folder(self) -> bool:
        return self.mime_type == FOLDER_MIME_TYPE


def escape_query_value(value: str) -> str:
    """Escape a literal for use inside single quotes in a Drive ``q`` filter."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def build_query(
    name: str | None = None,
    parent_id: str | None = None,
    exclude_trashed: bool = True,
    folders_only: bool = False,
) -> str:
    """Compose a Drive search query from the supported filters."""
    clauses: list[str] = []
    if name is not None:
        clauses.append(f"name = '{escape_query_value(name)}'")
    if parent_id is not None:
        clauses.append(f"'{escape_query_value(parent_id)}' in parents")
    if folders_only:
        clauses.append(f"mimeType = '{FOLDER_MIME_TYPE}'")
    if exclude_trashed:
        clauses.append("trashed = false")
    return " and ".join(clauses)


class DriveClient:
    """Async Google Drive client bound to one access token.

    Usage::

        async with DriveClient(token, timeout=30.0) as drive:
            folder_id = await drive.create_folder("Invoices")
            file_id = await drive.create_file(folder_id, "Invoice-1.pdf", data)

    Args:
        access_token: OAuth 2.0 bearer token with a Drive file scope.
        timeout: Per-request timeout in seconds.
        http_client: Optional pre-built ``httpx.AsyncClient`` (tests pass one
            backed by ``httpx.MockTransport``).  The caller keeps ownership.
    """

    def __init__(
        self,
        access_token: str,
        *,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._headers = {"Authorization": f"Bearer {access_token}"}
        self._timeout = httpx.Timeout(timeout)
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=self._timeout)

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def create_folder(self, name: str, parent_id: str | None = None) -> str:
        """Create a folder and return its id."""
        body: dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME_TYPE}
        if parent_id:
            body["parents"] = [parent_id]
        data = await self._request(
            "POST", f"{DRIVE_API_URL}/files", params={"fields": "id"}, json=body
        )
        logger.info("Created Drive folder %s (%s)", data["id"], name)
        return data["id"]

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_files(
        self,
        name: str | None = None,
        parent_id: str | None = None,
        exclude_trashed: bool = True,
        folders_only: bool = False,
    ) -> list[DriveFile]:
        """List files matching the filters, following pagination."""
        params: dict[str, Any] = {
            "q": build_query(name, parent_id, exclude_trashed, folders_only),
            "fields": "nextPageToken, files(id, name, mimeType, parents)",
            "pageSize": 100,
        }
        files: list[DriveFile] = []
        while True:
            data = await self._request("GET", f"{DRIVE_API_URL}/files", params=params)
            for item in data.get("files", []):
                parents = item.get("parents") or [None]
                files.append(
                    DriveFile(
                        id=item["id"],
                        name=item.get("name", ""),
                        mime_type=item.get("mimeType"),
                        parent_id=parents[0],
                    )
                )
            token = data.get("nextPageToken")
            if not token:
                break
            params["pageToken"] = token
        logger.debug("Listed %d Drive files for q=%s", len(files), params["q"])
        return files

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def create_file(
        self,
        parent_id: str,
        name: str,
        data: bytes,
        mime_type: str = "application/pdf",
    ) -> str:
        """Upload *data* as a new file named *name* inside *parent_id*.

        Returns:
            The Drive file id.
        """
        metadata = {"name": name, "parents": [parent_id], "mimeType": mime_type}
        boundary = f"invoicedrive-{uuid.uuid4().hex}"
        body = b"".join(
            [
                f"--{boundary}\r\n".encode(),
                b"Content-Type: application/json; charset=UTF-8\r\n\r\n",
                json.dumps(metadata).encode("utf-8"),
                f"\r\n--{boundary}\r\n".encode(),
                f"Content-Type: {mime_type}\r\n\r\n".encode(),
                bytes(data),
                f"\r\n--{boundary}--\r\n".encode(),
            ]
        )
        result = await self._request(
            "POST",
            f"{DRIVE_UPLOAD_URL}/files",
            params={"uploadType": "multipart", "fields": "id, name"},
            content=body,
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
        )
        logger.debug("Uploaded %s (%d bytes) -> %s", name, len(data), result["id"])
        return result["id"]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> DriveClient:
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        merged = dict(self._headers)
        if headers:
            merged.update(headers)
        response = await self._http.request(
            method, url, headers=merged, timeout=self._timeout, **kwargs
        )
        response.raise_for_status()
        if not response.content:
            return {}
        return response.json()
