# src/db/crud.py
from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Optional

from db.models import (
    DeviceBinding,
    TableSession,
    TableSessionRecord,
    parse_iso,
    to_iso,
    utc_now,
)
from db.storage import Storage
from table.errors import ExpiredSessionError, PersistenceError
from utils.logger import get_logger

_logger = get_logger(__name__)

SESSION_KEY = "table-session"
BINDING_KEY = "table-identity"


# ---------------------------
# Session record
# ---------------------------


def build_record(session: TableSession, ttl_hours: float) -> TableSessionRecord:
    """Wrap ``session`` in its persisted envelope; expiry counts from creation."""
    created = parse_iso(session.created_at)
    return TableSessionRecord(
        session=session,
        created_at=to_iso(created),
        expires_at=to_iso(created + timedelta(hours=ttl_hours)),
    )


def encode_record(record: TableSessionRecord) -> str:
    return json.dumps(record.to_dict(), separators=(",", ":"), ensure_ascii=False)


def decode_record(raw: str, now: Optional[datetime] = None) -> TableSessionRecord:
    """
    Parse a stored record.

    Raises:
        ExpiredSessionError: the record is past its ``expires_at``.
        PersistenceError: the payload is not a readable record.
    """
    try:
        record = TableSessionRecord.from_dict(json.loads(raw))
        expired = record.is_expired(now)
    except (ValueError, KeyError, TypeError) as exc:
        raise PersistenceError(f"Stored session is unreadable: {exc}") from exc
    if expired:
        raise ExpiredSessionError(
            f"Session {record.session.id} expired at {record.expires_at}"
        )
    return record


async def load_session(
    storage: Storage, now: Optional[datetime] = None
) -> Optional[TableSession]:
    """Return the stored session, or None when absent, expired or corrupt.

    Expired and corrupt records are removed so the next load starts clean.
    """
    raw = await storage.get(SESSION_KEY)
    if raw is None:
        return None
    try:
        return decode_record(raw, now or utc_now()).session
    except ExpiredSessionError as exc:
        _logger.info(f"Discarding stored session: {exc}")
    except PersistenceError as exc:
        _logger.warning(f"Discarding stored session: {exc}")
    await clear_session(storage)
    await clear_binding(storage)
    return None


async def save_session(storage: Storage, session: TableSession, ttl_hours: float) -> None:
    await storage.set(SESSION_KEY, encode_record(build_record(session, ttl_hours)))


async def clear_session(storage: Storage) -> None:
    await storage.remove(SESSION_KEY)


# ---------------------------
# Device binding
# ---------------------------


async def load_binding(storage: Storage) -> Optional[DeviceBinding]:
    raw = await storage.get(BINDING_KEY)
    if raw is None:
        return None
    try:
        return DeviceBinding.from_dict(json.loads(raw))
    except (ValueError, KeyError, TypeError) as exc:
        _logger.warning(f"Discarding unreadable device binding: {exc}")
        await storage.remove(BINDING_KEY)
        return None


async def save_binding(storage: Storage, binding: DeviceBinding) -> None:
    await storage.set(BINDING_KEY, json.dumps(binding.to_dict()))


async def clear_binding(storage: Storage) -> None:
    await storage.remove(BINDING_KEY)
