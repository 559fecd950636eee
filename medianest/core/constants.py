"""
Centralised constants used across the application.

Keeping magic strings in one place makes it easy to rename keys,
avoids silent typos, and keeps ``grep`` useful when debugging.
"""

from __future__ import annotations

# ── Redis key prefixes ──────────────────────────────────────────────────────
# Every Redis key written by the application starts with one of
# these prefixes so the keyspace stays organised and collisions
# are impossible.

REDIS_PREFIX_ITEM_STATUS: str = "item_status:"
"""Prefix for cached status entries (``item_status:<id>``)."""


# ── MongoDB ─────────────────────────────────────────────────────────────────

COUNTER_KEY: str = "item_counter"
"""``_id`` of the singleton sequence-counter document."""

COUNTER_FIELD: str = "value"
"""Field holding the last issued id on the counter document."""


# ── Items ───────────────────────────────────────────────────────────────────

DEFAULT_TITLE: str = "Untitled"
"""Title stored when the uploader does not supply one."""

CACHE_SCHEMA_VERSION: int = 1
"""Version tag written into every cache entry."""


# ── Queue message headers ───────────────────────────────────────────────────

HEADER_SOURCE: str = "source"
HEADER_TIMESTAMP: str = "timestamp"
HEADER_RETRY_COUNT: str = "retry-count"

CONTENT_TYPE_JSON: str = "application/json"

PUBLISH_FAILED_MESSAGE: str = "Job could not be enqueued for processing"
"""``error_message`` recorded on an item whose job never reached the broker."""
