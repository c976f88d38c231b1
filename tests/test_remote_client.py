"""Tests for the batch dispatcher and connectivity probe."""

import httpx
import pytest

from todo_sync.models import ConflictSide, ItemStatus
from todo_sync.sync.remote import RemoteClient


def client_for(handler, **kwargs):
    return RemoteClient(
        "http://remote.test/api",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        **kwargs,
    )


@pytest.fixture
def items(tasks, queue):
    for title in ("one", "two", "three"):
        tasks.create_task(title)
    return queue.pending_items()


class TestProcessBatch:

    async def test_sends_client_ids_and_payloads(self, peer, items):
        async with peer.client() as remote:
            response = await remote.process_batch(items)

        assert len(peer.batches) == 1
        sent = peer.batches[0]
        assert [entry["client_id"] for entry in sent] == [item.id for item in items]
        assert sent[0]["operation"] == "create"
        assert sent[0]["data"] == items[0].data
        assert all(result.succeeded for result in response.processed_items)

    async def test_results_matched_by_client_id(self, peer, items):
        peer.reverse_results = True
        peer.item_overrides[items[0].task_id] = {"status": "error", "error": "rejected"}

        async with peer.client() as remote:
            response = await remote.process_batch(items)

        outcomes = response.by_client_id()
        assert outcomes[items[0].id].status == ItemStatus.ERROR
        assert outcomes[items[0].id].error == "rejected"
        assert outcomes[items[1].id].server_id == f"srv-{items[1].task_id}"
        assert outcomes[items[2].id].server_id == f"srv-{items[2].task_id}"

    async def test_missing_result_reported_as_error(self, items):
        def handler(request):
            return httpx.Response(200, json={"processed_items": [
                {"client_id": items[0].id, "status": "success", "server_id": "S1"},
                {"client_id": "unknown-item", "status": "success"},
            ]})

        async with client_for(handler) as remote:
            response = await remote.process_batch(items)

        outcomes = response.by_client_id()
        assert len(response.processed_items) == len(items)
        assert outcomes[items[0].id].succeeded
        assert outcomes[items[1].id].error == "No result returned for queue item"
        assert "unknown-item" not in outcomes

    async def test_transport_failure_fails_every_item(self, peer, items):
        peer.fail_batches = 1

        async with peer.client() as remote:
            response = await remote.process_batch(items)

        assert response.failed_at_transport
        assert len(response.processed_items) == len(items)
        assert {result.status for result in response.processed_items} == {ItemStatus.ERROR}
        assert len({result.error for result in response.processed_items}) == 1

    async def test_non_2xx_uses_body_message(self, items):
        def handler(request):
            return httpx.Response(500, json={"message": "database is down"})

        async with client_for(handler) as remote:
            response = await remote.process_batch(items)

        assert response.transport_error == "database is down"
        assert all(result.error == "database is down" for result in response.processed_items)

    async def test_non_2xx_without_body(self, items):
        def handler(request):
            return httpx.Response(502, text="Bad Gateway")

        async with client_for(handler) as remote:
            response = await remote.process_batch(items)

        assert response.transport_error == "remote returned HTTP 502"

    async def test_malformed_body(self, items):
        def handler(request):
            return httpx.Response(200, json={"unexpected": True})

        async with client_for(handler) as remote:
            response = await remote.process_batch(items)

        assert response.failed_at_transport
        assert "processed_items" in response.transport_error

    async def test_empty_batch_skips_network(self, peer):
        async with peer.client() as remote:
            response = await remote.process_batch([])

        assert response.processed_items == []
        assert peer.batches == []


class TestConflicts:

    async def test_remote_newer_counts_as_success(self, peer, items):
        remote_copy = {"title": "server title", "updated_at": "2099-01-01T00:00:00Z"}
        peer.item_overrides[items[0].task_id] = {
            "status": "conflict", "server_id": "S1", "resolved_data": remote_copy,
        }

        async with peer.client() as remote:
            response = await remote.process_batch(items[:1])

        result = response.processed_items[0]
        assert result.status == ItemStatus.SUCCESS
        assert result.resolution == ConflictSide.REMOTE
        assert result.resolved_data["title"] == "server title"
        assert result.server_id == "S1"
        assert len(remote.resolver.history) == 1

    async def test_local_newer_keeps_item_in_conflict(self, peer, items):
        remote_copy = {"title": "stale", "updated_at": "2000-01-01T00:00:00Z"}
        peer.item_overrides[items[0].task_id] = {"status": "conflict", "resolved_data": remote_copy}

        async with peer.client() as remote:
            response = await remote.process_batch(items[:1])

        result = response.processed_items[0]
        assert result.status == ItemStatus.CONFLICT
        assert result.resolution == ConflictSide.LOCAL
        assert not result.succeeded
        assert "local" in result.error

    async def test_conflict_without_data_is_error(self, peer, items):
        peer.item_overrides[items[0].task_id] = {"status": "conflict"}

        async with peer.client() as remote:
            response = await remote.process_batch(items[:1])

        assert not response.processed_items[0].succeeded
        assert response.processed_items[0].resolution is None

    async def test_unknown_status_is_error(self, peer, items):
        peer.item_overrides[items[0].task_id] = {"status": "maybe"}

        async with peer.client() as remote:
            response = await remote.process_batch(items[:1])

        assert response.processed_items[0].status == ItemStatus.ERROR
        assert "maybe" in response.processed_items[0].error


class TestConnectivity:

    async def test_online(self, peer):
        async with peer.client() as remote:
            assert await remote.check_connectivity() is True
        assert peer.health_checks == 1

    async def test_connection_refused(self, peer):
        peer.online = False
        async with peer.client() as remote:
            assert await remote.check_connectivity() is False

    async def test_slow_probe_times_out(self, peer):
        peer.health_delay = 1.0
        async with peer.client(connectivity_timeout=0.05) as remote:
            assert await remote.check_connectivity() is False

    async def test_server_error_means_offline(self):
        def handler(request):
            return httpx.Response(503)

        async with client_for(handler) as remote:
            assert await remote.check_connectivity() is False
