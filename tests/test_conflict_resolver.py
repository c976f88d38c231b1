"""Tests for last-write-wins conflict resolution."""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from todo_sync.models import ConflictSide
from todo_sync.sync.conflict import ConflictResolver


T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def snapshot(title, updated_at):
    return {"id": "task-1", "title": title, "updated_at": updated_at}


@pytest.fixture
def resolver():
    return ConflictResolver()


class TestLastWriteWins:

    def test_local_newer_wins(self, resolver):
        local = snapshot("local", (T0 + timedelta(seconds=1)).isoformat())
        remote = snapshot("remote", T0.isoformat())

        resolution = resolver.resolve(local, remote)
        assert resolution.side == ConflictSide.LOCAL
        assert resolution.winner["title"] == "local"
        assert resolution.fallback is False

    def test_remote_newer_wins(self, resolver):
        local = snapshot("local", T0.isoformat())
        remote = snapshot("remote", (T0 + timedelta(minutes=5)).isoformat())

        resolution = resolver.resolve(local, remote)
        assert resolution.side == ConflictSide.REMOTE
        assert resolution.winner["title"] == "remote"

    def test_tie_goes_to_remote(self, resolver):
        resolution = resolver.resolve(snapshot("local", T0.isoformat()), snapshot("remote", T0.isoformat()))
        assert resolution.side == ConflictSide.REMOTE
        assert "tie" in resolution.reason

    def test_compares_both_sides(self, resolver):
        # Guards against comparing a timestamp with itself
        local = snapshot("local", T0.isoformat())
        remote = snapshot("remote", (T0 - timedelta(days=1)).isoformat())
        assert resolver.resolve(local, remote).side == ConflictSide.LOCAL

    @pytest.mark.parametrize("offset_seconds, expected", [
        (-60, ConflictSide.REMOTE),
        (0, ConflictSide.REMOTE),
        (60, ConflictSide.LOCAL),
    ])
    def test_local_iff_strictly_later(self, resolver, offset_seconds, expected):
        local = snapshot("local", T0 + timedelta(seconds=offset_seconds))
        remote = snapshot("remote", T0)
        assert resolver.resolve(local, remote).side == expected

    def test_mixed_timestamp_formats(self, resolver):
        local = snapshot("local", "2024-05-01T12:00:01Z")
        remote = snapshot("remote", "2024-05-01T12:00:00")  # naive, read as UTC
        assert resolver.resolve(local, remote).side == ConflictSide.LOCAL


class TestFallback:

    @pytest.mark.parametrize("local_ts, remote_ts", [
        ("not a date", T0.isoformat()),
        (T0.isoformat(), None),
        (None, None),
        ("", T0.isoformat()),
    ])
    def test_unusable_timestamps_fall_back_to_remote(self, resolver, local_ts, remote_ts):
        resolution = resolver.resolve(snapshot("local", local_ts), snapshot("remote", remote_ts))
        assert resolution.side == ConflictSide.REMOTE
        assert resolution.winner["title"] == "remote"
        assert resolution.fallback is True

    def test_non_mapping_input(self, resolver):
        resolution = resolver.resolve(None, {"title": "remote"})
        assert resolution.side == ConflictSide.REMOTE
        assert resolution.fallback is True


class TestAuditTrail:

    def test_every_resolution_logged(self, resolver, caplog):
        with caplog.at_level(logging.INFO, logger="todo_sync.sync.conflict"):
            resolver.resolve(snapshot("local", T0.isoformat()), snapshot("remote", "garbage"))
            resolver.resolve(snapshot("local", T0.isoformat()), snapshot("remote", T0.isoformat()))

        messages = [record.getMessage() for record in caplog.records]
        assert len(messages) == 2
        assert all("task-1" in message for message in messages)
        assert caplog.records[0].levelno == logging.WARNING

    def test_history_is_bounded(self):
        resolver = ConflictResolver(max_history_entries=3)
        for i in range(5):
            resolver.resolve(snapshot(f"local-{i}", T0.isoformat()), snapshot("remote", T0.isoformat()))

        assert len(resolver.history) == 3
        assert resolver.history[-1].winner["title"] == "remote"
