"""Tests for the sync error taxonomy."""

from __future__ import annotations

import pytest

from alltime.errors import (
    AuthError,
    AuthorizationDenied,
    NetworkError,
    ReentrantRequestError,
    ServerError,
    SyncError,
)


class TestServerError:
    @pytest.mark.parametrize("status", [400, 404, 409, 422])
    def test_client_errors_are_permanent(self, status: int) -> None:
        assert ServerError.from_status(status).permanent is True

    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503])
    def test_retryable_statuses_are_transient(self, status: int) -> None:
        assert ServerError.from_status(status).permanent is False

    def test_message_carries_code_and_detail(self) -> None:
        assert str(ServerError.from_status(500)) == "Server error (code: 500)"
        error = ServerError.from_status(422, "date is required")
        assert str(error) == "Server error (code: 422): date is required"
        assert error.status_code == 422

    def test_undecodable_body_has_no_status(self) -> None:
        error = ServerError("Unreadable response")
        assert error.status_code is None
        assert error.permanent is False


class TestHierarchy:
    @pytest.mark.parametrize(
        "error",
        [
            NetworkError("offline"),
            AuthError("expired"),
            ServerError.from_status(500),
            AuthorizationDenied(),
            ReentrantRequestError("k"),
        ],
    )
    def test_everything_is_a_sync_error(self, error: Exception) -> None:
        assert isinstance(error, SyncError)

    def test_reentrant_request_is_a_runtime_error(self) -> None:
        error = ReentrantRequestError("api/v1/summary/daily")
        assert isinstance(error, RuntimeError)
        assert error.key == "api/v1/summary/daily"

    def test_denied_types_are_deduplicated(self) -> None:
        error = AuthorizationDenied(["steps", "steps", "sleep"])
        assert error.denied_types == frozenset({"steps", "sleep"})
        assert "2 required types" in str(error)
