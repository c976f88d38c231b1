"""Test doubles for the remote sync peer."""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

import httpx

from todo_sync.sync.conflict import ConflictResolver
from todo_sync.sync.remote import RemoteClient


class FakeRemotePeer:
    """In-process stand-in for the remote authority, served via httpx.MockTransport.

    By default every item succeeds with ``server_id = "srv-<task_id>"``.
    """

    def __init__(self):
        self.online = True
        self.health_delay: float = 0.0
        self.batch_delay: float = 0.0
        self.fail_batches: int = 0  # Number of upcoming batch calls that fail at transport level
        self.item_overrides: Dict[str, Dict[str, Any]] = {}  # task_id -> processed_items entry
        self.reverse_results = False
        self.batches: List[List[Dict[str, Any]]] = []
        self.health_checks = 0
        self.on_batch: Optional[Callable[[List[Dict[str, Any]]], None]] = None

    @property
    def dispatched(self) -> List[Dict[str, Any]]:
        return [item for batch in self.batches for item in batch]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/health"):
            self.health_checks += 1
            if self.health_delay:
                await asyncio.sleep(self.health_delay)
            if not self.online:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"status": "ok"})

        if request.url.path.endswith("/sync/batch"):
            items = json.loads(request.content)["items"]
            self.batches.append(items)
            if self.on_batch is not None:
                self.on_batch(items)
            if self.batch_delay:
                await asyncio.sleep(self.batch_delay)
            if self.fail_batches:
                self.fail_batches -= 1
                raise httpx.ConnectError("connection reset", request=request)

            results = [self._result_for(item) for item in items]
            if self.reverse_results:
                results.reverse()
            return httpx.Response(200, json={"processed_items": results})

        return httpx.Response(404, json={"error": "not found"})

    def _result_for(self, item: Dict[str, Any]) -> Dict[str, Any]:
        override = self.item_overrides.get(item["task_id"])
        if override is not None:
            return {"client_id": item["client_id"], **override}
        return {
            "client_id": item["client_id"],
            "server_id": f"srv-{item['task_id']}",
            "status": "success",
        }

    def client(self, base_url: str = "http://remote.test/api", **kwargs) -> RemoteClient:
        return RemoteClient(
            base_url,
            resolver=kwargs.pop("resolver", None) or ConflictResolver(),
            client=httpx.AsyncClient(transport=httpx.MockTransport(self.handler)),
            **kwargs,
        )
