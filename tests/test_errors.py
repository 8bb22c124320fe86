"""Tests for error classification and operator guidance."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from invoicedrive.upload.errors import (
    ClassifiedError,
    ErrorKind,
    classify,
    describe_error,
    kind_from_message,
)


class _StatusCarrier(Exception):
    """Foreign error type exposing only a ``status`` attribute."""

    def __init__(self, status: int, message: str = "") -> None:
        super().__init__(message)
        self.status = status


class _Unprintable:
    def __str__(self) -> str:
        raise RuntimeError("cannot render")


# ======================================================================
# HTTP status mapping
# ======================================================================


class TestStatusMapping:
    """Tests for classification from HTTP status codes."""

    @pytest.mark.parametrize(
        "status, kind, retryable",
        [
            (401, ErrorKind.AUTHENTICATION, False),
            (403, ErrorKind.PERMISSION, False),
            (404, ErrorKind.NOT_FOUND, True),
            (429, ErrorKind.QUOTA, True),
            (400, ErrorKind.VALIDATION, False),
            (500, ErrorKind.NETWORK, True),
            (503, ErrorKind.NETWORK, True),
        ],
    )
    def test_status_codes(self, make_http_error, status, kind, retryable):
        """Each HTTP status lands in its taxonomy bucket."""
        error = classify(make_http_error(status))
        assert error.kind == kind
        assert error.retryable is retryable
        assert error.status_code == status

    def test_403_rate_limit_is_quota(self, make_http_error):
        """A 403 whose body mentions the rate limit is Quota, not Permission."""
        raw = make_http_error(403, body='{"error": {"errors": [{"reason": "userRateLimitExceeded"}]}}')
        error = classify(raw)
        assert error.kind == ErrorKind.QUOTA
        assert error.retryable is True

    def test_status_attribute_on_foreign_error(self):
        """Objects exposing ``status`` are classified by it."""
        assert classify(_StatusCarrier(401, "token expired")).kind == ErrorKind.AUTHENTICATION

    def test_out_of_range_code_is_ignored(self):
        """A non-HTTP ``code`` attribute does not masquerade as a status."""
        raw = _StatusCarrier(7)
        assert classify(raw).kind == ErrorKind.UNKNOWN


# ======================================================================
# Exception types and messages
# ======================================================================


class TestTypeAndMessageMapping:
    """Tests for transport, input-shape and message heuristics."""

    def test_transport_error_is_network(self):
        """httpx connection failures are retryable Network errors."""
        raw = httpx.ConnectError("connection refused")
        error = classify(raw)
        assert error.kind == ErrorKind.NETWORK
        assert error.retryable is True

    def test_timeout_is_network(self):
        """asyncio timeouts are Network errors."""
        assert classify(asyncio.TimeoutError()).kind == ErrorKind.NETWORK

    def test_value_error_is_validation(self):
        """Malformed input is terminal."""
        error = classify(ValueError("bad metadata"))
        assert error.kind == ErrorKind.VALIDATION
        assert error.retryable is False

    def test_message_heuristics(self):
        """Plain exceptions are bucketed by their message."""
        assert classify(Exception("invalid_grant")).kind == ErrorKind.AUTHENTICATION
        assert classify(Exception("Rate limit hit")).kind == ErrorKind.QUOTA
        assert classify(Exception("getaddrinfo ENOTFOUND")).kind == ErrorKind.NETWORK

    def test_unknown_defaults_to_retryable(self):
        """Unrecognized failures are Unknown and retryable."""
        error = classify(RuntimeError("something odd"))
        assert error.kind == ErrorKind.UNKNOWN
        assert error.retryable is True


# ======================================================================
# Purity and totality
# ======================================================================


class TestClassifyContract:
    """Tests that classify is total, pure and idempotent."""

    def test_already_classified_passes_through(self):
        """Classifying a ClassifiedError returns it unchanged."""
        original = ClassifiedError(ErrorKind.QUOTA, "Quota error: slow down")
        assert classify(original) is original

    def test_identical_input_identical_output(self, make_http_error):
        """Same raw error yields the same kind, retryable flag and message."""
        raw = make_http_error(429, "Too Many Requests")
        first, second = classify(raw), classify(raw)
        assert (first.kind, first.retryable, first.message) == (
            second.kind,
            second.retryable,
            second.message,
        )

    def test_never_raises(self):
        """Objects whose str() raises are still classified."""
        error = classify(_Unprintable())
        assert error.kind == ErrorKind.UNKNOWN
        assert "_Unprintable" in error.message

    def test_message_names_kind(self, make_http_error):
        """Messages start with the kind so stored errors stay self-describing."""
        error = classify(make_http_error(401, "Invalid Credentials"))
        assert error.message.startswith("Authentication error:")
        assert kind_from_message(error.message) == ErrorKind.AUTHENTICATION

    def test_kind_from_message_unknown_prefix(self):
        assert kind_from_message("disk on fire") is None
        assert kind_from_message(None) is None


# ======================================================================
# Guidance
# ======================================================================


class TestDescribeError:
    """Tests for operator-facing guidance."""

    def test_authentication_requires_reauth(self):
        """Authentication guidance asks for re-authentication."""
        guidance = describe_error(ErrorKind.AUTHENTICATION)
        assert guidance.requires_reauth is True
        assert "re-authenticate" in guidance.actions
        assert guidance.retryable is False

    def test_every_kind_has_guidance(self):
        for kind in ErrorKind:
            assert describe_error(kind).title

    def test_none_maps_to_unknown(self):
        assert describe_error(None) == describe_error(ErrorKind.UNKNOWN)
