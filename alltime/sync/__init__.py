"""Sync orchestration for AllTime.

Modules:
    scheduler     — Lifecycle / periodic sync scheduler
    collaborators — Calendar provider sync and cache prefetch
    retry         — Per-provider retry with backoff and reconnect tracking
"""
