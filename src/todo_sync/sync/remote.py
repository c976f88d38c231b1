"""HTTP client for the remote authority.

Sends batches to ``POST {base}/sync/batch`` and probes ``GET {base}/health``.
Transport failures never escape: a failed batch is turned into a uniform
error result for every item, and a failed probe returns False.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..models import BatchResponse, ConflictSide, ItemStatus, ProcessedItem, SyncQueueItem
from .conflict import ConflictResolver
from .errors import BatchTransportError, ConnectivityError


logger = logging.getLogger(__name__)


class RemoteClient:
    """Batch dispatcher and connectivity probe."""

    def __init__(self, base_url: str, request_timeout: float = 30.0,
                 connectivity_timeout: float = 5.0,
                 resolver: Optional[ConflictResolver] = None,
                 client: Optional[httpx.AsyncClient] = None):
        """Initialize the remote client.

        Args:
            base_url: Remote API base URL, e.g. ``http://host/api``
            request_timeout: Timeout in seconds for one batch call
            connectivity_timeout: Timeout in seconds for the health probe
            resolver: Conflict resolver for items the remote flags
            client: Optional preconfigured httpx client (tests inject a
                client with a mock transport)
        """
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self.connectivity_timeout = connectivity_timeout
        self.resolver = resolver or ConflictResolver()
        self.client = client or httpx.AsyncClient(timeout=request_timeout)
        self.logger = logging.getLogger(__name__)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    # Connectivity

    async def check_connectivity(self) -> bool:
        """Return True if the remote health endpoint answers with 2xx."""
        try:
            await self._probe()
            return True
        except ConnectivityError as e:
            self.logger.warning(f"Server unreachable: {e}")
            return False

    async def _probe(self) -> None:
        url = f"{self.base_url}/health"
        try:
            response = await asyncio.wait_for(
                self.client.get(url, timeout=self.connectivity_timeout),
                timeout=self.connectivity_timeout,
            )
        except asyncio.TimeoutError:
            raise ConnectivityError(f"health check timed out after {self.connectivity_timeout}s")
        except httpx.TimeoutException:
            raise ConnectivityError(f"health check timed out after {self.connectivity_timeout}s")
        except httpx.HTTPError as e:
            raise ConnectivityError(f"health check failed: {e}")

        if not response.is_success:
            raise ConnectivityError(f"health check returned HTTP {response.status_code}")

    # Batches

    async def process_batch(self, items: Sequence[SyncQueueItem]) -> BatchResponse:
        """Send one batch and return one result per item.

        Results are matched to items by queue id (``client_id``), never by
        position. Items the remote leaves out are reported as errors.
        Conflicts carrying remote data are resolved before returning.
        """
        if not items:
            return BatchResponse()

        try:
            body = await self._post_batch(items)
            entries = self._parse_entries(body)
        except BatchTransportError as e:
            self.logger.error(f"Batch sync failed for {len(items)} items: {e}")
            return BatchResponse(
                processed_items=[
                    ProcessedItem(client_id=item.id, status=ItemStatus.ERROR, error=str(e))
                    for item in items
                ],
                transport_error=str(e),
            )

        return BatchResponse(processed_items=self._fold(items, entries))

    async def _post_batch(self, items: Sequence[SyncQueueItem]) -> Any:
        url = f"{self.base_url}/sync/batch"
        payload = {"items": [item.to_wire() for item in items]}
        try:
            response = await asyncio.wait_for(
                self.client.post(url, json=payload, timeout=self.request_timeout),
                timeout=self.request_timeout,
            )
        except asyncio.TimeoutError:
            raise BatchTransportError(f"batch request timed out after {self.request_timeout}s")
        except httpx.TimeoutException:
            raise BatchTransportError(f"batch request timed out after {self.request_timeout}s")
        except httpx.HTTPError as e:
            raise BatchTransportError(f"batch request failed: {e}")

        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.is_success:
            detail = None
            if isinstance(body, dict):
                detail = body.get("message") or body.get("error")
            raise BatchTransportError(detail or f"remote returned HTTP {response.status_code}")

        if body is None:
            raise BatchTransportError("remote returned an unparseable body")
        return body

    @staticmethod
    def _parse_entries(body: Any) -> List[Dict[str, Any]]:
        entries = body.get("processed_items") if isinstance(body, dict) else None
        if not isinstance(entries, list):
            raise BatchTransportError("remote response is missing processed_items")
        return [entry for entry in entries if isinstance(entry, dict)]

    def _fold(self, items: Sequence[SyncQueueItem],
              entries: List[Dict[str, Any]]) -> List[ProcessedItem]:
        by_client_id: Dict[str, Dict[str, Any]] = {}
        for entry in entries:
            client_id = entry.get("client_id")
            if client_id is None:
                self.logger.warning("Ignoring processed item without client_id")
                continue
            client_id = str(client_id)
            if client_id in by_client_id:
                self.logger.warning(f"Duplicate result for queue item {client_id}; keeping the first")
                continue
            by_client_id[client_id] = entry

        known = {item.id for item in items}
        for client_id in by_client_id.keys() - known:
            self.logger.warning(f"Ignoring result for unknown queue item {client_id}")

        results = []
        for item in items:
            entry = by_client_id.get(item.id)
            if entry is None:
                results.append(ProcessedItem(
                    client_id=item.id,
                    status=ItemStatus.ERROR,
                    error="No result returned for queue item",
                ))
                continue
            results.append(self._to_processed(item, entry))
        return results

    def _to_processed(self, item: SyncQueueItem, entry: Dict[str, Any]) -> ProcessedItem:
        server_id = entry.get("server_id") or None
        resolved_data = entry.get("resolved_data")
        if not isinstance(resolved_data, dict):
            resolved_data = None

        try:
            status = ItemStatus(entry.get("status"))
        except ValueError:
            return ProcessedItem(
                client_id=item.id,
                status=ItemStatus.ERROR,
                server_id=server_id,
                error=f"Unknown item status: {entry.get('status')!r}",
            )

        if status == ItemStatus.SUCCESS:
            return ProcessedItem(client_id=item.id, status=status,
                                 server_id=server_id, resolved_data=resolved_data)

        if status == ItemStatus.ERROR:
            return ProcessedItem(client_id=item.id, status=status, server_id=server_id,
                                 error=entry.get("error") or "Unknown sync error")

        # Conflict
        if resolved_data is None:
            return ProcessedItem(client_id=item.id, status=status, server_id=server_id,
                                 error=entry.get("error") or "Conflict without remote data")

        resolution = self.resolver.resolve(item.payload(), resolved_data)
        if resolution.side == ConflictSide.REMOTE:
            return ProcessedItem(
                client_id=item.id,
                status=ItemStatus.SUCCESS,
                server_id=server_id or resolved_data.get("server_id"),
                resolved_data=resolution.winner,
                resolution=ConflictSide.REMOTE,
            )
        return ProcessedItem(
            client_id=item.id,
            status=ItemStatus.CONFLICT,
            server_id=server_id,
            error=f"Conflict kept local version: {resolution.reason}",
            resolved_data=resolution.winner,
            resolution=ConflictSide.LOCAL,
        )
