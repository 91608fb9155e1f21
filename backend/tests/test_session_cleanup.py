"""Tests for the session expiry sweep."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from smart_email.errors import InternalError
from smart_email.models import SessionCreate, utcnow
from smart_email.services import SessionCleanupService

from conftest import ORG_ID, USER_ID


def _create(store, ttl_hours=24):
    return store.create(
        SessionCreate(organization_id=ORG_ID, user_id=USER_ID, donor_ids=[1], initial_instruction="Thank them"),
        ttl_hours=ttl_hours,
    )


def test_nothing_to_sweep_within_ttl(store):
    _create(store)
    cleanup = SessionCleanupService(store)

    assert cleanup.sweep_expired(utcnow() + timedelta(hours=23)) == 0


def test_sweep_after_ttl(store):
    session = _create(store)
    cleanup = SessionCleanupService(store)

    assert cleanup.sweep_expired(utcnow() + timedelta(hours=25)) == 1
    assert store.get(session.session_id) is None


def test_cleanup_stats(store):
    _create(store, ttl_hours=1)
    _create(store)
    cleanup = SessionCleanupService(store)

    stats = cleanup.get_cleanup_stats(utcnow() + timedelta(hours=2))

    assert stats["active"] == 2
    assert stats["expired"] == 1
    assert stats["total"] == 2


@pytest.mark.asyncio
async def test_run_forever_survives_failed_sweeps():
    store = MagicMock()
    store.sweep_expired.side_effect = [InternalError("db down"), RuntimeError("boom"), 3, asyncio.CancelledError()]
    cleanup = SessionCleanupService(store)

    with patch("smart_email.services.session_cleanup.asyncio.sleep", new=AsyncMock()) as sleep:
        with pytest.raises(asyncio.CancelledError):
            await cleanup.run_forever(interval_seconds=5)

    assert store.sweep_expired.call_count == 4
    sleep.assert_awaited_with(5)
