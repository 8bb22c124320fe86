"""Tests for DriveClient against httpx.MockTransport (no network)."""

from __future__ import annotations

import json

import httpx
import pytest

from invoicedrive.upload.client import (
    FOLDER_MIME_TYPE,
    DriveClient,
    build_query,
    escape_query_value,
)
from invoicedrive.upload.errors import ErrorKind, classify


def _client(handler) -> tuple[DriveClient, httpx.AsyncClient]:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DriveClient("tok-123", timeout=5.0, http_client=http), http


class TestQueryBuilding:
    """Tests for Drive ``q`` filter construction."""

    def test_escape_quotes(self):
        assert escape_query_value("O'Brien") == "O\\'Brien"

    def test_full_query(self):
        q = build_query("Invoices", "root-1", exclude_trashed=True, folders_only=True)
        assert q == (
            "name = 'Invoices' and 'root-1' in parents and "
            f"mimeType = '{FOLDER_MIME_TYPE}' and trashed = false"
        )

    def test_trashed_included_on_request(self):
        assert build_query("x", exclude_trashed=False) == "name = 'x'"


class TestDriveClient:
    """Tests for the three Drive primitives."""

    async def test_create_folder(self):
        """Folder creation posts the folder mime type and parent."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "folder-9"})

        client, http = _client(handler)
        async with http:
            folder_id = await client.create_folder("Invoices", "parent-1")

        assert folder_id == "folder-9"
        assert seen["auth"] == "Bearer tok-123"
        assert seen["body"] == {
            "name": "Invoices",
            "mimeType": FOLDER_MIME_TYPE,
            "parents": ["parent-1"],
        }

    async def test_list_files_follows_pages(self):
        """Listing keeps requesting while nextPageToken is returned."""
        pages = [
            {"files": [{"id": "a", "name": "A.pdf", "parents": ["f"]}], "nextPageToken": "p2"},
            {"files": [{"id": "b", "name": "B.pdf"}]},
        ]
        tokens = []

        def handler(request: httpx.Request) -> httpx.Response:
            tokens.append(request.url.params.get("pageToken"))
            return httpx.Response(200, json=pages[len(tokens) - 1])

        client, http = _client(handler)
        async with http:
            files = await client.list_files(name="A.pdf", parent_id="f")

        assert [f.id for f in files] == ["a", "b"]
        assert files[0].parent_id == "f"
        assert files[1].parent_id is None
        assert tokens == [None, "p2"]

    async def test_create_file_multipart(self):
        """Uploads use multipart/related with JSON metadata then the bytes."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            seen["ctype"] = request.headers["Content-Type"]
            seen["body"] = request.content
            return httpx.Response(200, json={"id": "file-1", "name": "Invoice.pdf"})

        client, http = _client(handler)
        async with http:
            file_id = await client.create_file("folder-1", "Invoice.pdf", b"%PDF-1.7")

        assert file_id == "file-1"
        assert seen["params"]["uploadType"] == "multipart"
        assert seen["ctype"].startswith("multipart/related; boundary=")
        assert b'"parents": ["folder-1"]' in seen["body"]
        assert b"%PDF-1.7" in seen["body"]

    async def test_error_status_is_classifiable(self):
        """A 401 surfaces as HTTPStatusError and classifies as Authentication."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": {"message": "Invalid Credentials"}})

        client, http = _client(handler)
        async with http:
            with pytest.raises(httpx.HTTPStatusError) as excinfo:
                await client.create_folder("Invoices")

        assert classify(excinfo.value).kind == ErrorKind.AUTHENTICATION

    async def test_close_leaves_injected_client_open(self):
        """Closing the DriveClient does not close a caller-owned httpx client."""
        client, http = _client(lambda request: httpx.Response(200, json={}))
        await client.close()
        assert not http.is_closed
        await http.aclose()
