"""Tests for bannerworks.core.retention - the unsaved image sweeper."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from bannerworks.core.models import GeneratedImageRecord
from bannerworks.core.retention import RetentionSweeper
from bannerworks.core.store import ImageStore, new_image_id

NOW = datetime(2024, 5, 2, 12, 0, tzinfo=timezone.utc)


def _store_image(store: ImageStore, age: timedelta, saved: bool = False) -> GeneratedImageRecord:
    record = store.create_image_record(
        GeneratedImageRecord(
            id=new_image_id(),
            user_id="u-1",
            url="https://images.example/a.png",
            user_prompt="A prompt",
            resolution="RESOLUTION_1536_640",
            created_at=NOW - age,
        )
    )
    if saved:
        store.mark_image_saved(record.id, "u-1")
    return record


@pytest.fixture
def sweeper(store) -> RetentionSweeper:
    return RetentionSweeper(store, retention_hours=23, clock=lambda: NOW)


class TestSweep:
    """Test one sweep pass."""

    def test_window_boundary(self, store, sweeper):
        """An image just under 23h old survives; one just over is deleted."""
        young = _store_image(store, timedelta(hours=22, minutes=59))
        old = _store_image(store, timedelta(hours=23, minutes=1))

        result = sweeper.sweep()

        assert result.deleted == [old.id]
        assert result.errors == {}
        assert store.get_image_record(young.id).id == young.id

    def test_saved_images_never_deleted(self, store, sweeper):
        saved = _store_image(store, timedelta(days=30), saved=True)
        assert sweeper.sweep().deleted == []
        assert store.get_image_record(saved.id).saved is True

    def test_second_sweep_is_noop(self, store, sweeper):
        _store_image(store, timedelta(hours=30))
        assert len(sweeper.sweep().deleted) == 1
        second = sweeper.sweep()
        assert second.deleted == []
        assert second.errors == {}

    def test_explicit_reference_time(self, store, sweeper):
        record = _store_image(store, timedelta(hours=1))
        assert sweeper.sweep(now=NOW + timedelta(hours=23)).deleted == [record.id]

    def test_failed_delete_does_not_stop_sweep(self, store, sweeper, monkeypatch):
        first = _store_image(store, timedelta(hours=48))
        second = _store_image(store, timedelta(hours=47))
        original_delete = store.delete_image_record

        def flaky_delete(image_id, user_id=None, *, unsaved_only=False):
            if image_id == first.id:
                raise RuntimeError("database is locked")
            return original_delete(image_id, user_id, unsaved_only=unsaved_only)

        monkeypatch.setattr(store, "delete_image_record", flaky_delete)
        result = sweeper.sweep()

        assert result.deleted == [second.id]
        assert result.errors == {first.id: "database is locked"}

    def test_image_saved_during_sweep_survives(self, store, sweeper, monkeypatch):
        """A record saved between the query and its delete is kept."""
        record = _store_image(store, timedelta(hours=48))
        original_find = store.find_stale_unsaved_images

        def find_then_save(threshold):
            stale = original_find(threshold)
            store.mark_image_saved(record.id, "u-1")
            return stale

        monkeypatch.setattr(store, "find_stale_unsaved_images", find_then_save)
        assert sweeper.sweep().deleted == []
        assert store.get_image_record(record.id).saved is True


class TestRunForever:
    async def test_runs_until_cancelled(self, store):
        _store_image(store, timedelta(hours=48))
        sweeper = RetentionSweeper(store, interval_seconds=0.01, clock=lambda: NOW)
        task = asyncio.create_task(sweeper.run_forever())
        await asyncio.sleep(0.1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert store.list_recent_images("u-1") == []
