"""Deterministic invoice file names and destination conflict handling.

Format::

    Invoice-{number}-{party}-{YYYY-MM-DD}[-Recurring-{descriptor}]{ext}

Each component is passed through :func:`sanitize_component`, which is
idempotent and caps components at :data:`MAX_COMPONENT_LENGTH` characters.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import TYPE_CHECKING

from invoicedrive.models import ArtifactMetadata, utc_now

if TYPE_CHECKING:
    from invoicedrive.upload.client import DriveClient

logger = logging.getLogger(__name__)

MAX_COMPONENT_LENGTH = 50
DEFAULT_EXTENSION = ".pdf"

_FORBIDDEN = re.compile(r'[<>:"/\\|?*&]')
_WHITESPACE = re.compile(r"\s+")
_DASHES = re.compile(r"-{2,}")
_UNSAFE_TIMESTAMP = re.compile(r"[:.+]")


def sanitize_component(component: str) -> str:
    """Make one name component safe for Drive and local filesystems.

    Removes ``< > : " / \\ | ? * &``, turns whitespace runs into a single
    dash, collapses dash runs, trims dashes from both ends and truncates to
    50 characters.  ``sanitize_component(sanitize_component(x))`` always
    equals ``sanitize_component(x)``.
    """
    cleaned = _FORBIDDEN.sub("", component)
    cleaned = _WHITESPACE.sub("-", cleaned)
    cleaned = _DASHES.sub("-", cleaned).strip("-")
    # Truncation can expose a trailing dash
    return cleaned[:MAX_COMPONENT_LENGTH].rstrip("-")


def normalize_extension(extension: str) -> str:
    """Return *extension* with a leading dot; ``""`` stays ``""``."""
    if extension and not extension.startswith("."):
        return f".{extension}"
    return extension


def derive_name(metadata: ArtifactMetadata, extension: str = DEFAULT_EXTENSION) -> str:
    """Build the canonical file name for an invoice rendering.

    Pure and deterministic: the same metadata always yields the same name.
    The caller is responsible for non-empty number and party fields.
    """
    extension = normalize_extension(extension)

    parts = [
        "Invoice",
        sanitize_component(metadata.document_number),
        sanitize_component(metadata.party_name),
        metadata.date.strftime("%Y-%m-%d"),
    ]
    if metadata.is_recurring and metadata.recurrence_descriptor:
        descriptor = sanitize_component(metadata.recurrence_descriptor)
        if descriptor:
            parts.extend(["Recurring", descriptor])

    return "-".join(parts) + extension


def split_extension(name: str, extension: str | None = None) -> tuple[str, str]:
    """Split ``"a.b.pdf"`` into ``("a.b", ".pdf")``; no dot means no extension.

    When *extension* is given only that suffix is split off, so ``""`` keeps
    dotted names such as ``"Invoice-INV.1"`` whole.
    """
    if extension is not None:
        extension = normalize_extension(extension)
        if extension and name.endswith(extension) and len(name) > len(extension):
            return name[: -len(extension)], extension
        return name, ""
    dot = name.rfind(".")
    if dot <= 0:
        return name, ""
    return name[:dot], name[dot:]


def conflict_suffix(now: datetime | None = None) -> str:
    """Timestamp suffix with name-unsafe characters replaced by dashes."""
    now = now or utc_now()
    stamp = now.isoformat(timespec="milliseconds")
    if stamp.endswith("+00:00"):
        stamp = stamp[:-6] + "Z"
    return _UNSAFE_TIMESTAMP.sub("-", stamp)


async def resolve_conflict(
    client: DriveClient,
    container_id: str,
    candidate: str,
    *,
    extension: str | None = None,
    now: datetime | None = None,
) -> str:
    """Return a name that does not collide inside *container_id*.

    If a non-trashed file named exactly *candidate* exists, a timestamp
    suffix is inserted before the extension (*extension* when given, else
    the last dotted part of the name).  Detection is best-effort: if
    the lookup itself fails the candidate is returned unchanged and the
    create call is left to succeed or fail on its own.
    """
    try:
        existing = await client.list_files(
            name=candidate, parent_id=container_id, exclude_trashed=True
        )
    except Exception as exc:
        logger.warning(
            "Could not check %r for name conflicts in %s, using it as-is: %s",
            candidate,
            container_id,
            exc,
        )
        return candidate

    if not any(f.name == candidate for f in existing):
        return candidate

    base, ext = split_extension(candidate, extension)
    resolved = f"{base}-{conflict_suffix(now)}{ext}"
    logger.info("Name %r already taken in %s, using %r", candidate, container_id, resolved)
    return resolved
