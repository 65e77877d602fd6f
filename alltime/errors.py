"""Error taxonomy for the AllTime sync core.

Every failure that crosses a component boundary is one of these types so
callers can tell "try again on the next trigger" apart from "the user has to
act":

    NetworkError         — connectivity / timeout; retried by the next trigger
    AuthError            — credentials expired or missing; re-authenticate
    ServerError          — non-2xx from the backend; ``permanent`` for 4xx bugs
    AuthorizationDenied  — every required health type denied; terminal
    ReentrantRequestError — a producer asked for its own in-flight key

Deduplicated fetches do not get their own type: the producer's exception is
re-raised verbatim to every waiting caller.
"""

from __future__ import annotations

from typing import Iterable


class SyncError(Exception):
    """Base class for all sync-core errors."""


class NetworkError(SyncError):
    """The backend could not be reached (DNS, connect, read timeout...)."""


class AuthError(SyncError):
    """Credentials are missing, expired or rejected (HTTP 401/403)."""


class ServerError(SyncError):
    """The backend answered with a non-2xx status or an unreadable body.

    Attributes:
        status_code: HTTP status, or None when the body could not be decoded.
        permanent:   True for 4xx responses that indicate a malformed request.
                     Re-sending the same payload will fail the same way.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        permanent: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.permanent = permanent

    @classmethod
    def from_status(cls, status_code: int, detail: str = "") -> "ServerError":
        """Build a ServerError, classifying 4xx (except 408/429) as permanent."""
        permanent = 400 <= status_code < 500 and status_code not in (408, 429)
        message = f"Server error (code: {status_code})"
        if detail:
            message = f"{message}: {detail}"
        return cls(message, status_code=status_code, permanent=permanent)


class AuthorizationDenied(SyncError):
    """Every required health data type was denied by the user.

    Not retried automatically: the user has to re-enable access in the
    system settings.
    """

    def __init__(self, denied_types: Iterable[object] = ()) -> None:
        self.denied_types = frozenset(denied_types)
        super().__init__(
            f"Health data access denied for all {len(self.denied_types)} required types"
        )


class ReentrantRequestError(SyncError, RuntimeError):
    """A producer requested the key it is itself producing."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(
            f"Producer for '{key}' requested '{key}' again; recursive "
            "deduplicated requests would wait on themselves"
        )
