"""Cache / dedup key construction.

Two logically equivalent requests must produce the same key, otherwise the
cache misses and the deduplicator lets a second fetch through.  Keys are
``"<endpoint>"`` or ``"<endpoint>?<name>=<value>&..."`` with parameters sorted
by name and values normalized:

    - None values are dropped
    - date / datetime → ISO-8601
    - bool → "true" / "false"
    - lists / tuples → comma-joined normalized items
"""

from __future__ import annotations

import hashlib
import json
from datetime import date, datetime
from typing import Any


def _normalize(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return ",".join(_normalize(v) for v in value)
    return str(value)


def cache_key(endpoint: str, **params: Any) -> str:
    """Generate the key for an endpoint + parameters.

    Args:
        endpoint: Endpoint identifier, e.g. ``"/api/v1/summary/daily"``.
        params:   Request parameters.

    Returns:
        Deterministic key string.
    """
    base = endpoint.strip().strip("/")
    items = sorted((k, _normalize(v)) for k, v in params.items() if v is not None)
    if not items:
        return base
    return base + "?" + "&".join(f"{k}={v}" for k, v in items)


def day_key(endpoint: str, day: date) -> str:
    """Key for a one-day resource (summary, daily health record...)."""
    return cache_key(endpoint, date=day)


def date_range_key(endpoint: str, start: date, end: date) -> str:
    """Key for a date-range resource (insights, timelines...)."""
    return cache_key(endpoint, start_date=start, end_date=end)


def payload_content_hash(payload: Any) -> str:
    """Compute a content hash for detecting identical payloads.

    Args:
        payload: Any JSON-serializable body.

    Returns:
        SHA-256 hex digest of the canonicalized JSON.
    """
    # Sort keys for deterministic serialization
    canonical = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
