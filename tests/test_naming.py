"""Tests for file name derivation and conflict resolution."""

from __future__ import annotations

import re
from datetime import date, datetime, timezone

import httpx
import pytest

from invoicedrive.models import ArtifactMetadata
from invoicedrive.upload.naming import (
    MAX_COMPONENT_LENGTH,
    conflict_suffix,
    derive_name,
    resolve_conflict,
    sanitize_component,
    split_extension,
)

FIXED_NOW = datetime(2024, 1, 15, 10, 30, 0, 123000, tzinfo=timezone.utc)


# ======================================================================
# sanitize_component
# ======================================================================


class TestSanitizeComponent:
    """Tests for per-component sanitization."""

    def test_forbidden_characters_removed(self):
        """All of < > : \" / \\ | ? * & are stripped."""
        assert sanitize_component('A<b>c:d"e/f\\g|h?i*j&k') == "Abcdefghijk"

    def test_whitespace_and_dashes_collapse(self):
        """Whitespace runs become one dash; dash runs collapse; ends trimmed."""
        assert sanitize_component("  Acme   Corp -- Ltd  ") == "Acme-Corp-Ltd"

    def test_truncated_to_limit(self):
        assert len(sanitize_component("x" * 200)) == MAX_COMPONENT_LENGTH

    def test_empty_input(self):
        assert sanitize_component("") == ""
        assert sanitize_component("&&&") == ""

    @pytest.mark.parametrize(
        "raw",
        [
            "Acme Corp",
            "a" * 49 + " b",
            " - & - ",
            "Smith & Sons / Ltd.",
            "x" * 49 + "--yyy",
        ],
    )
    def test_idempotent(self, raw):
        """Sanitizing twice equals sanitizing once."""
        once = sanitize_component(raw)
        assert sanitize_component(once) == once


# ======================================================================
# derive_name
# ======================================================================


class TestDeriveName:
    """Tests for canonical invoice file names."""

    def test_basic_name(self, metadata):
        """INV-001 for Acme Corp on 2024-01-15 gets the canonical name."""
        assert derive_name(metadata) == "Invoice-INV-001-Acme-Corp-2024-01-15.pdf"

    def test_recurring_suffix(self):
        """Recurring invoices carry the sanitized descriptor."""
        meta = ArtifactMetadata("INV-7", "Globex", date(2024, 3, 1), True, "Monthly Retainer")
        assert derive_name(meta) == "Invoice-INV-7-Globex-2024-03-01-Recurring-Monthly-Retainer.pdf"

    def test_recurring_without_descriptor(self):
        """No descriptor, no recurring suffix."""
        meta = ArtifactMetadata("INV-7", "Globex", date(2024, 3, 1), True, None)
        assert derive_name(meta) == "Invoice-INV-7-Globex-2024-03-01.pdf"

    def test_descriptor_ignored_when_not_recurring(self):
        meta = ArtifactMetadata("INV-7", "Globex", date(2024, 3, 1), False, "Monthly")
        assert "Recurring" not in derive_name(meta)

    def test_custom_extension(self, metadata):
        assert derive_name(metadata, "html").endswith("-2024-01-15.html")

    def test_deterministic_and_bounded(self):
        """Same input, same name; every component stays within the limit."""
        meta = ArtifactMetadata("N" * 80, "Very Long Party " * 10, date(2024, 1, 1))
        name = derive_name(meta)
        assert name == derive_name(meta)
        match = re.fullmatch(r"Invoice-(N+)-(.+)-2024-01-01\.pdf", name)
        assert match is not None
        assert len(match.group(1)) <= MAX_COMPONENT_LENGTH
        assert len(match.group(2)) <= MAX_COMPONENT_LENGTH


# ======================================================================
# Conflict resolution
# ======================================================================


class TestConflictSuffix:
    """Tests for the timestamp suffix."""

    def test_unsafe_characters_replaced(self):
        assert conflict_suffix(FIXED_NOW) == "2024-01-15T10-30-00-123Z"

    def test_split_extension(self):
        assert split_extension("a.b.pdf") == ("a.b", ".pdf")
        assert split_extension("noext") == ("noext", "")

    def test_split_known_extension(self):
        """A configured extension is split off; an empty one keeps dots in the base."""
        assert split_extension("Invoice-INV.1.pdf", ".pdf") == ("Invoice-INV.1", ".pdf")
        assert split_extension("Invoice-INV.1.html", "html") == ("Invoice-INV.1", ".html")
        assert split_extension("Invoice-INV.1-Acme", "") == ("Invoice-INV.1-Acme", "")


class TestResolveConflict:
    """Tests for resolve_conflict against the Drive double."""

    async def test_no_collision_returns_candidate(self, drive):
        folder = drive.add_folder("Invoices")
        name = await resolve_conflict(drive, folder, "Invoice-1.pdf")
        assert name == "Invoice-1.pdf"

    async def test_collision_inserts_suffix_before_extension(self, drive):
        """A taken name gains the timestamp suffix and keeps its extension."""
        folder = drive.add_folder("Invoices")
        drive.add_file(folder, "Invoice-1.pdf")
        name = await resolve_conflict(drive, folder, "Invoice-1.pdf", now=FIXED_NOW)
        assert name == "Invoice-1-2024-01-15T10-30-00-123Z.pdf"

    async def test_same_name_in_other_folder_is_not_a_collision(self, drive):
        folder = drive.add_folder("Invoices")
        other = drive.add_folder("Archive")
        drive.add_file(other, "Invoice-1.pdf")
        assert await resolve_conflict(drive, folder, "Invoice-1.pdf") == "Invoice-1.pdf"

    async def test_lookup_failure_falls_back_to_candidate(self, drive):
        """A failed existence check never blocks the upload."""
        folder = drive.add_folder("Invoices")
        drive.list_errors = [httpx.ConnectError("boom")]
        assert await resolve_conflict(drive, folder, "Invoice-1.pdf") == "Invoice-1.pdf"

    async def test_collision_without_extension_appends_suffix(self, drive):
        """With no file extension a dotted document number stays intact."""
        folder = drive.add_folder("Invoices")
        drive.add_file(folder, "Invoice-INV.1-Acme-2024-01-15")
        name = await resolve_conflict(
            drive, folder, "Invoice-INV.1-Acme-2024-01-15", extension="", now=FIXED_NOW
        )
        assert name == "Invoice-INV.1-Acme-2024-01-15-2024-01-15T10-30-00-123Z"
