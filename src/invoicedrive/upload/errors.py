"""Error taxonomy for remote storage failures.

Raw failures from httpx, the OS, or the Drive API are folded into a single
:class:`ClassifiedError` tagged with an :class:`ErrorKind`.  Callers branch
on ``error.kind`` and ``error.retryable``; there is no exception subclass
per kind.

Classification order:
  1. Already-classified errors pass through unchanged.
  2. HTTP status codes (from ``httpx.HTTPStatusError`` or any object that
     exposes one).
  3. Transport-level exception types (connection, DNS, timeout).
  4. Input-shape exception types (``ValueError`` and friends).
  5. Message heuristics.
  6. Anything else is ``UNKNOWN`` and retryable.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum

import httpx


class ErrorKind(str, Enum):
    """Fixed taxonomy of remote storage failures."""

    AUTHENTICATION = "Authentication"
    PERMISSION = "Permission"
    NOT_FOUND = "NotFound"
    QUOTA = "Quota"
    NETWORK = "Network"
    VALIDATION = "Validation"
    UNKNOWN = "Unknown"


_RETRYABLE: dict[ErrorKind, bool] = {
    ErrorKind.AUTHENTICATION: False,
    ErrorKind.PERMISSION: False,
    # Destination folder vanished; the pipeline re-resolves it on retry.
    ErrorKind.NOT_FOUND: True,
    ErrorKind.QUOTA: True,
    ErrorKind.NETWORK: True,
    ErrorKind.VALIDATION: False,
    ErrorKind.UNKNOWN: True,
}

_VALIDATION_STATUSES = frozenset({400, 409, 411, 413, 422})

_QUOTA_MARKERS = ("ratelimitexceeded", "rate limit", "quota", "userratelimitexceeded")


class ClassifiedError(Exception):
    """A remote failure normalized into the :class:`ErrorKind` taxonomy.

    Attributes:
        kind: Taxonomy bucket.
        retryable: Whether an automatic retry may succeed.
        message: Human-readable message, always prefixed with the kind.
        status_code: HTTP status when one was available.
        attempts: Number of invocations made before giving up.  Set by
            :class:`~invoicedrive.upload.retry.RetryExecutor`.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        retryable: bool | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.retryable = _RETRYABLE[kind] if retryable is None else retryable
        self.message = message
        self.status_code = status_code
        self.attempts = 1

    def __repr__(self) -> str:
        return (
            f"ClassifiedError(kind={self.kind.value!r}, retryable={self.retryable}, "
            f"message={self.message!r})"
        )


def _make(kind: ErrorKind, detail: str, status_code: int | None = None) -> ClassifiedError:
    return ClassifiedError(kind, f"{kind.value} error: {detail}", status_code=status_code)


def _detail(raw: object) -> str:
    try:
        text = str(raw).strip()
    except Exception:
        text = ""
    if not text:
        text = type(raw).__name__
    return text


def _status_code(raw: object) -> int | None:
    """Pull an HTTP status code off *raw* if it carries one."""
    if isinstance(raw, httpx.HTTPStatusError):
        return raw.response.status_code
    response = getattr(raw, "response", None)
    candidates = (
        getattr(raw, "status_code", None),
        getattr(raw, "status", None),
        getattr(response, "status_code", None),
        getattr(response, "status", None),
        getattr(raw, "code", None),
    )
    for value in candidates:
        if isinstance(value, int) and not isinstance(value, bool) and 100 <= value <= 599:
            return value
    return None


def _response_text(raw: object) -> str:
    response = getattr(raw, "response", None)
    if response is None:
        return ""
    try:
        return str(getattr(response, "text", "") or "")
    except Exception:
        # Streaming responses that were never read raise on .text
        return ""


def _from_status(status: int, raw: object, detail: str) -> ClassifiedError:
    haystack = f"{detail} {_response_text(raw)}".lower()
    if status == 401:
        return _make(ErrorKind.AUTHENTICATION, detail, status)
    if status == 403:
        if any(marker in haystack for marker in _QUOTA_MARKERS):
            return _make(ErrorKind.QUOTA, detail, status)
        return _make(ErrorKind.PERMISSION, detail, status)
    if status == 404:
        return _make(ErrorKind.NOT_FOUND, detail, status)
    if status == 408:
        return _make(ErrorKind.NETWORK, detail, status)
    if status == 429:
        return _make(ErrorKind.QUOTA, detail, status)
    if status in _VALIDATION_STATUSES:
        return _make(ErrorKind.VALIDATION, detail, status)
    if status >= 500:
        return _make(ErrorKind.NETWORK, detail, status)
    return _make(ErrorKind.UNKNOWN, detail, status)


def _from_message(detail: str) -> ClassifiedError | None:
    text = detail.lower()
    if "unauthorized" in text or "invalid_grant" in text or "invalid credentials" in text:
        return _make(ErrorKind.AUTHENTICATION, detail)
    if "rate limit" in text or "quota exceeded" in text:
        return _make(ErrorKind.QUOTA, detail)
    if (
        "network" in text
        or "timeout" in text
        or "timed out" in text
        or "enotfound" in text
        or "econnreset" in text
    ):
        return _make(ErrorKind.NETWORK, detail)
    if "invalid" in text or "bad request" in text:
        return _make(ErrorKind.VALIDATION, detail)
    return None


def classify(raw: object) -> ClassifiedError:
    """Normalize any raised object into a :class:`ClassifiedError`.

    Pure and total: never raises, and identical input yields an identical
    ``(kind, retryable, message)``.
    """
    if isinstance(raw, ClassifiedError):
        return raw

    detail = _detail(raw)

    status = _status_code(raw)
    if status is not None:
        return _from_status(status, raw, detail)

    if isinstance(
        raw,
        (httpx.TransportError, asyncio.TimeoutError, TimeoutError, ConnectionError, OSError),
    ):
        return _make(ErrorKind.NETWORK, detail)

    if isinstance(raw, (ValueError, TypeError, UnicodeError)):
        return _make(ErrorKind.VALIDATION, detail)

    by_message = _from_message(detail)
    if by_message is not None:
        return by_message

    return _make(ErrorKind.UNKNOWN, detail)


def kind_from_message(message: str | None) -> ErrorKind | None:
    """Recover the :class:`ErrorKind` from a persisted error message."""
    if not message:
        return None
    for kind in ErrorKind:
        if message.startswith(f"{kind.value} error"):
            return kind
    return None


# ---------------------------------------------------------------------------
# Operator-facing guidance
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ErrorGuidance:
    """What to tell an operator about a failed upload."""

    title: str
    message: str
    retryable: bool
    actions: tuple[str, ...] = field(default_factory=tuple)
    requires_reauth: bool = False


_GUIDANCE: dict[ErrorKind, ErrorGuidance] = {
    ErrorKind.AUTHENTICATION: ErrorGuidance(
        title="Google Drive Authentication Required",
        message=(
            "Your Google Drive access has expired or been revoked. "
            "Re-authenticate to continue storing invoices."
        ),
        retryable=False,
        actions=("re-authenticate",),
        requires_reauth=True,
    ),
    ErrorKind.PERMISSION: ErrorGuidance(
        title="Permission Denied",
        message=(
            "You don't have permission to write to the configured Google Drive "
            "folder. Choose a different folder or check its sharing settings."
        ),
        retryable=False,
        actions=("change-folder",),
    ),
    ErrorKind.NOT_FOUND: ErrorGuidance(
        title="Folder Not Found",
        message=(
            "The configured Google Drive folder no longer exists. "
            "It will be recreated on the next attempt."
        ),
        retryable=True,
        actions=("retry", "change-folder"),
    ),
    ErrorKind.QUOTA: ErrorGuidance(
        title="Google Drive Quota Exceeded",
        message=(
            "Google Drive storage is full or the API quota was exceeded. "
            "Free up space or retry later."
        ),
        retryable=True,
        actions=("check-storage", "retry-later"),
    ),
    ErrorKind.NETWORK: ErrorGuidance(
        title="Connection Problem",
        message="Unable to reach Google Drive. Check the connection and retry.",
        retryable=True,
        actions=("retry",),
    ),
    ErrorKind.VALIDATION: ErrorGuidance(
        title="Invalid File",
        message=(
            "Google Drive rejected the invoice file. "
            "Regenerate the invoice before retrying."
        ),
        retryable=False,
        actions=("contact-support",),
    ),
    ErrorKind.UNKNOWN: ErrorGuidance(
        title="Upload Failed",
        message=(
            "An unexpected error occurred while uploading to Google Drive. "
            "The invoice itself was still generated."
        ),
        retryable=True,
        actions=("retry",),
    ),
}


def describe_error(kind: ErrorKind | None) -> ErrorGuidance:
    """Return operator guidance for *kind* (``None`` maps to UNKNOWN)."""
    return _GUIDANCE[kind or ErrorKind.UNKNOWN]
