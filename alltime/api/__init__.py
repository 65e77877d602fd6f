"""Backend API access."""

from alltime.api.client import BackendClient

__all__ = ["BackendClient"]
