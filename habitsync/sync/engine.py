"""Sync engine: push local events, pull and replay remote events, compact.

Sync is best-effort. Every public operation swallows transient failures,
logs them, and leaves local state so the next call can retry safely.
"""

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..storage import KeyValueStore
from .event_log import EventLog, now_ms
from .events import Event
from .merge import Collections, apply_event, sort_events
from .models import Habit, Note
from .remote import DocumentExistsError, DocumentNotFoundError, RemoteEventStore

if TYPE_CHECKING:
    from ..state import LocalState

logger = logging.getLogger(__name__)

LAST_SYNC_TIME_KEY = "habitsync.last_sync_time"
LAST_SNAPSHOT_KEY = "habitsync.last_snapshot"
# Timestamp of the snapshot the local state is built on, and the remote
# events applied since then.
SNAPSHOT_EPOCH_KEY = "habitsync.snapshot_epoch"
APPLIED_IDS_KEY = "habitsync.applied_event_ids"

ONE_DAY_MS = 24 * 60 * 60 * 1000


class SyncStatus(Enum):
    """Status of a sync operation."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"  # No account to sync


@dataclass
class MergeResult:
    """Collections produced by a pull."""

    habits: list[Habit]
    notes: list[Note]
    applied: int
    checkpoint: int
    from_snapshot: bool = False


@dataclass
class SyncResult:
    """Result of a full sync cycle."""

    status: SyncStatus
    events_pushed: int = 0
    events_pulled: int = 0
    merge: MergeResult | None = None
    snapshot_taken: bool = False
    error: str | None = None
    timestamp: datetime | None = None


@dataclass
class _Snapshot:
    timestamp: int
    habits: list[Habit]
    notes: list[Note]

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "_Snapshot":
        return cls(
            timestamp=int(data["timestamp"]),
            habits=[Habit.from_dict(h) for h in _decode_collection(data.get("habits", "[]"))],
            notes=[Note.from_dict(n) for n in _decode_collection(data.get("notes", "[]"))],
        )


def _decode_collection(raw: Any) -> list[dict[str, Any]]:
    # Snapshots store collections as JSON strings; accept plain lists too.
    if isinstance(raw, str):
        raw = json.loads(raw)
    if not isinstance(raw, list):
        raise ValueError(f"Expected a list, got {type(raw).__name__}")
    return raw


class SyncEngine:
    """Synchronizes one device's local state with the shared remote log."""

    def __init__(
        self,
        kv: KeyValueStore,
        remote: RemoteEventStore,
        clock: Callable[[], int] = now_ms,
        snapshot_interval_ms: int = ONE_DAY_MS,
        snapshot_enabled: bool = True,
    ):
        """Initialize the sync engine.

        Args:
            kv: Local key-value storage for the queue and sync markers.
            remote: Shared remote event store.
            clock: Source of epoch-millisecond timestamps.
            snapshot_interval_ms: Minimum time between compactions.
            snapshot_enabled: Whether full_sync runs compaction.
        """
        self.kv = kv
        self.remote = remote
        self.event_log = EventLog(kv, clock=clock)
        self.snapshot_interval_ms = snapshot_interval_ms
        self.snapshot_enabled = snapshot_enabled
        self._clock = clock
        self._last_sync: datetime | None = None
        self._last_error: str | None = None
        self._consecutive_failures = 0

    # ==================== Checkpoint ====================

    @property
    def checkpoint(self) -> int:
        """Timestamp of the most recently applied remote event."""
        return self.kv.get_int(LAST_SYNC_TIME_KEY, 0)

    def _advance_checkpoint(self, timestamp: int) -> int:
        checkpoint = max(self.checkpoint, timestamp)
        self.kv.set(LAST_SYNC_TIME_KEY, str(checkpoint))
        return checkpoint

    def _record_failure(self, message: str) -> None:
        self._last_error = message
        logger.warning(message)

    # ==================== Push ====================

    async def push_events(self, account_id: str | None) -> int:
        """Deliver the pending queue to the account's remote log.

        The queue is only drained after the remote write succeeds; on any
        failure the events stay queued for the next attempt.

        Args:
            account_id: Account to push to. No-op if empty.

        Returns:
            Number of events delivered.
        """
        if not account_id:
            return 0

        pending = self.event_log.pending()
        if not pending:
            return 0

        wire_events = [e.to_dict() for e in pending]

        try:
            await self._append_or_create(account_id, wire_events)
        except Exception as e:
            self._record_failure(
                f"Push failed, keeping {len(pending)} events queued: {e}"
            )
            return 0

        # Events logged while the push was in flight stay queued.
        removed = self.event_log.remove([e.id for e in pending])
        logger.info(f"Pushed {removed} events for account {account_id}")
        return removed

    async def _append_or_create(
        self, account_id: str, wire_events: list[dict[str, Any]]
    ) -> None:
        now = self._clock()
        try:
            await self.remote.append_merge(account_id, wire_events, now)
        except DocumentNotFoundError:
            logger.info(f"No sync document for {account_id} yet, creating it")
            try:
                await self.remote.create(
                    account_id, {"lastUpdated": now, "events": wire_events}
                )
            except DocumentExistsError:
                # Another device created it first.
                await self.remote.append_merge(account_id, wire_events, now)

    # ==================== Pull ====================

    async def pull_events(
        self,
        account_id: str | None,
        habits: list[Habit],
        notes: list[Note],
    ) -> MergeResult | None:
        """Fetch remote events newer than the checkpoint and replay them.

        Events are replayed in timestamp order onto copies of habits and
        notes; the inputs are not modified. When the account carries a
        snapshot newer than the checkpoint, the snapshot replaces the inputs
        as the baseline. Every event in the compacted log is then replayed on
        top of it together with the pending queue.

        Once the local state is built on the current snapshot, events are
        selected by id instead of by checkpoint, so events that reach the
        log late with an older timestamp are still applied.

        Args:
            account_id: Account to pull from.
            habits: Current habit collection.
            notes: Current note collection.

        Returns:
            The merged collections, or None if there was nothing to merge or
            the pull failed. The checkpoint is unchanged when None.
        """
        if not account_id:
            return None

        checkpoint = self.checkpoint

        try:
            record_snapshot = await self._load_snapshot(account_id)
            document = await self.remote.get(account_id)
            remote_events = self._decode_events(document)

            snapshot_ts = int(record_snapshot["timestamp"]) if record_snapshot else 0
            snapshot = None
            if snapshot_ts > checkpoint:
                snapshot = _Snapshot.from_record(record_snapshot)
        except Exception as e:
            self._record_failure(f"Pull failed for account {account_id}: {e}")
            return None

        in_epoch = snapshot is None and 0 < snapshot_ts == self.kv.get_int(SNAPSHOT_EPOCH_KEY, 0)

        seen: set[str] = set()
        if snapshot:
            logger.info(
                f"Checkpoint {checkpoint} predates snapshot {snapshot.timestamp}, "
                "reloading from snapshot"
            )
            # Compaction emptied the log, so everything in it arrived after
            # the snapshot was taken.
            new_events = sort_events(remote_events)
            state = Collections.copy_of(snapshot.habits, snapshot.notes)
            remote_ids = {e.id for e in new_events}
            local = [e for e in self.event_log.pending() if e.id not in remote_ids]
            to_apply = sort_events(new_events + local)
            baseline = snapshot.timestamp
        else:
            if in_epoch:
                seen = self._applied_ids()
                new_events = sort_events(e for e in remote_events if e.id not in seen)
            else:
                new_events = sort_events(e for e in remote_events if e.timestamp > checkpoint)

            if not new_events:
                logger.debug(f"No remote events newer than {checkpoint}")
                return None

            state = Collections.copy_of(habits, notes)
            to_apply = new_events
            baseline = checkpoint

        for event in to_apply:
            apply_event(state, event)

        if snapshot or in_epoch:
            applied_ids = {e.id for e in new_events}
            self.kv.set_json(
                APPLIED_IDS_KEY,
                [e.id for e in remote_events if e.id in seen or e.id in applied_ids],
            )
        if snapshot:
            self.kv.set(SNAPSHOT_EPOCH_KEY, str(snapshot.timestamp))

        latest = new_events[-1].timestamp if new_events else baseline
        new_checkpoint = self._advance_checkpoint(max(baseline, latest))

        logger.info(
            f"Applied {len(new_events)} remote events, checkpoint {checkpoint} -> {new_checkpoint}"
        )
        return MergeResult(
            habits=state.habits,
            notes=state.notes,
            applied=len(new_events),
            checkpoint=new_checkpoint,
            from_snapshot=snapshot is not None,
        )

    def _applied_ids(self) -> set[str]:
        raw = self.kv.get_json(APPLIED_IDS_KEY, [])
        if not isinstance(raw, list):
            logger.warning("Applied event ids are not a list, treating as empty")
            return set()
        return {str(i) for i in raw}

    def _decode_events(self, document: dict[str, Any] | None) -> list[Event]:
        if document is None:
            return []

        raw_events = document.get("events") or []
        if not isinstance(raw_events, list):
            raise ValueError("Sync document events is not a list")

        events = []
        for raw in raw_events:
            try:
                events.append(Event.from_dict(raw))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping undecodable remote event: {e}")
        return events

    async def _load_snapshot(self, account_id: str) -> dict[str, Any] | None:
        record = await self.remote.get_user_record(account_id)
        if not record or not record.get("lastSnapshot"):
            return None
        return record["lastSnapshot"]

    # ==================== Snapshot / Compaction ====================

    async def perform_snapshot(
        self,
        account_id: str | None,
        habits: list[Habit],
        notes: list[Note],
    ) -> bool:
        """Write a full-state snapshot and truncate the remote event log.

        Runs at most once per snapshot interval on this device.

        Args:
            account_id: Account to compact.
            habits: Full current habit collection.
            notes: Full current note collection.

        Returns:
            True if the snapshot was written and the log truncated.
        """
        if not account_id:
            return False

        last_snapshot = self.kv.get_int(LAST_SNAPSHOT_KEY, 0)
        now = self._clock()
        if now - last_snapshot < self.snapshot_interval_ms:
            logger.debug("Snapshot skipped, cooldown has not elapsed")
            return False

        try:
            await self.remote.update_user_record(
                account_id,
                {
                    "lastSnapshot": {
                        "timestamp": now,
                        "habits": json.dumps([h.to_dict() for h in habits]),
                        "notes": json.dumps([n.to_dict() for n in notes]),
                    }
                },
            )
            await self.remote.overwrite(account_id, {"lastUpdated": now, "events": []})
        except Exception as e:
            self._record_failure(f"Snapshot failed for account {account_id}: {e}")
            return False

        self.kv.set(LAST_SNAPSHOT_KEY, str(now))
        # This device's state is the snapshot and the log is now empty.
        self.kv.set(SNAPSHOT_EPOCH_KEY, str(now))
        self.kv.set_json(APPLIED_IDS_KEY, [])
        self._advance_checkpoint(now)

        logger.info(
            f"Snapshot of {len(habits)} habits and {len(notes)} notes written, "
            "remote log truncated"
        )
        return True

    # ==================== Full sync ====================

    async def full_sync(
        self,
        account_id: str | None,
        habits: list[Habit],
        notes: list[Note],
    ) -> SyncResult:
        """Push, pull, then compact if due.

        Returns:
            Combined SyncResult. The merge field holds the pulled
            collections, if any.
        """
        if not account_id:
            return SyncResult(status=SyncStatus.SKIPPED, error="No account")

        self._last_error = None

        pushed = await self.push_events(account_id)
        merge = await self.pull_events(account_id, habits, notes)

        snapshot_taken = False
        if self.snapshot_enabled and self._last_error is None:
            current_habits = merge.habits if merge else habits
            current_notes = merge.notes if merge else notes
            snapshot_taken = await self.perform_snapshot(
                account_id, current_habits, current_notes
            )

        if self._last_error:
            self._consecutive_failures += 1
            status = SyncStatus.FAILED
        else:
            self._consecutive_failures = 0
            self._last_sync = datetime.now()
            status = SyncStatus.SUCCESS

        return SyncResult(
            status=status,
            events_pushed=pushed,
            events_pulled=merge.applied if merge else 0,
            merge=merge,
            snapshot_taken=snapshot_taken,
            error=self._last_error,
            timestamp=datetime.now(),
        )

    async def sync_loop(
        self,
        account_id: str,
        state: "LocalState",
        interval_seconds: int = 300,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Run continuous sync against a LocalState.

        Args:
            account_id: Account to sync.
            state: Local collections to sync and update with merge results.
            interval_seconds: Seconds between sync attempts.
            stop_event: Event to signal loop should stop.
        """
        logger.info(f"Starting sync loop with {interval_seconds}s interval")

        while True:
            if stop_event and stop_event.is_set():
                break

            try:
                result = await self.full_sync(account_id, state.habits, state.notes)
                if result.merge:
                    state.apply_merge(result.merge)
                logger.info(
                    f"Sync: {result.status.value}, "
                    f"pushed={result.events_pushed}, "
                    f"pulled={result.events_pulled}"
                )
            except Exception as e:
                logger.error(f"Sync loop error: {e}", exc_info=True)
                self._consecutive_failures += 1

            # Back off on consecutive failures
            wait_time = interval_seconds
            if self._consecutive_failures > 0:
                wait_time = min(
                    interval_seconds * (2 ** self._consecutive_failures),
                    3600,  # Max 1 hour
                )
                logger.debug(f"Backing off sync for {wait_time}s")

            if stop_event:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=wait_time)
                    break
                except asyncio.TimeoutError:
                    pass
            else:
                await asyncio.sleep(wait_time)

        logger.info("Sync loop stopped")

    @property
    def last_sync(self) -> datetime | None:
        """Get timestamp of last successful sync."""
        return self._last_sync

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with sync statistics.
        """
        last_snapshot = self.kv.get_int(LAST_SNAPSHOT_KEY, 0)
        return {
            "device_id": self.event_log.device_id,
            "pending_events": len(self.event_log),
            "checkpoint": self.checkpoint,
            "last_snapshot": last_snapshot or None,
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "consecutive_failures": self._consecutive_failures,
        }
