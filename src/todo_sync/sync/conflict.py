"""Last-write-wins conflict resolution.

The resolver is a pure decision function: it picks the authoritative copy of
a task and records why, and leaves applying the winner to its caller.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from ..models import ConflictSide
from ..utils.datetime import now_utc, parse_timestamp
from .errors import ConflictResolutionError


logger = logging.getLogger(__name__)


@dataclass
class ConflictResolution:
    """Outcome of resolving one conflict."""
    side: ConflictSide
    winner: Dict[str, Any]
    reason: str
    task_id: Optional[str] = None
    fallback: bool = False
    local_updated_at: Optional[datetime] = None
    remote_updated_at: Optional[datetime] = None
    resolved_at: datetime = field(default_factory=now_utc)


class ConflictResolver:
    """Resolves a local/remote pair of task snapshots."""

    def __init__(self, max_history_entries: int = 100):
        self.history: List[ConflictResolution] = []
        self.max_history_entries = max_history_entries
        self.logger = logging.getLogger(__name__)

    def resolve(self, local: Mapping[str, Any], remote: Mapping[str, Any]) -> ConflictResolution:
        """Pick the authoritative version of a task.

        The strictly later ``updated_at`` wins; on a tie the remote copy wins
        because the remote peer has already committed it. If either timestamp
        is missing or malformed, the remote copy wins and the fallback is
        recorded.

        Args:
            local: Local task snapshot
            remote: Remote task snapshot

        Returns:
            ConflictResolution naming the winning side and data
        """
        task_id = (local or {}).get("id") or (remote or {}).get("id")

        try:
            local_time, remote_time = self._timestamps(local, remote)
        except ConflictResolutionError as e:
            resolution = ConflictResolution(
                side=ConflictSide.REMOTE,
                winner=dict(remote or {}),
                reason=f"fallback to remote copy: {e}",
                task_id=task_id,
                fallback=True,
            )
            self.logger.warning(
                f"Conflict on task {task_id} resolved using remote version: {resolution.reason}"
            )
            return self._record(resolution)

        if local_time > remote_time:
            side, winner, reason = ConflictSide.LOCAL, local, "local copy is newer"
        elif local_time == remote_time:
            side, winner, reason = ConflictSide.REMOTE, remote, "timestamps tie, remote copy wins"
        else:
            side, winner, reason = ConflictSide.REMOTE, remote, "remote copy is newer"

        resolution = ConflictResolution(
            side=side,
            winner=dict(winner),
            reason=reason,
            task_id=task_id,
            local_updated_at=local_time,
            remote_updated_at=remote_time,
        )
        self.logger.info(
            f"Conflict on task {task_id} resolved using {side.value} version: {reason} "
            f"(local={local_time.isoformat()}, remote={remote_time.isoformat()})"
        )
        return self._record(resolution)

    def _timestamps(self, local: Optional[Mapping[str, Any]],
                    remote: Optional[Mapping[str, Any]]):
        if not isinstance(local, Mapping) or not isinstance(remote, Mapping):
            raise ConflictResolutionError("both versions must be mappings")
        try:
            return parse_timestamp(local.get("updated_at")), parse_timestamp(remote.get("updated_at"))
        except (TypeError, ValueError, OverflowError, OSError) as e:
            raise ConflictResolutionError(f"unusable updated_at: {e}") from e

    def _record(self, resolution: ConflictResolution) -> ConflictResolution:
        self.history.append(resolution)
        if len(self.history) > self.max_history_entries:
            del self.history[:-self.max_history_entries]
        return resolution
