"""
Sync Coordinator

Reconciles the local cache with the remote document store:
- Drains the outbound queue, FIFO per record, records interleaved
- Retries transient failures with capped exponential backoff
- Replaces the local copy with the remote one on rejection (no merging)
- Surfaces every rejection as a conflict the user must acknowledge
- Pulls the session's visible records and refreshes the cache
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from skilllab.core.config import settings
from skilllab.core.errors import TransientNetworkError, NotFound
from skilllab.models.records import RecordKind
from skilllab.models.sync_metadata import (
    OutboundMutation, SyncConflict, MutationType, QueueStatus, ConflictKind
)
from skilllab.schemas.sync import (
    RecordQuery, RemoteWriteResult, RejectionReason, SyncState,
    DrainReport, PullReport, SyncStatusReport
)
from skilllab.security.session import SessionContext, scope_key
from skilllab.services.sync.transport import RemoteStore

if TYPE_CHECKING:
    from skilllab.services.lifecycle_engine import LifecycleEngine

logger = logging.getLogger(__name__)

CONFLICT_KINDS = {
    RejectionReason.STALE_WRITE: ConflictKind.STALE_WRITE,
    RejectionReason.PERMISSION_DENIED: ConflictKind.PERMISSION_DENIED,
    RejectionReason.INVALID_TRANSITION: ConflictKind.INVALID_TRANSITION,
    RejectionReason.VALIDATION_FAILURE: ConflictKind.VALIDATION_FAILURE,
    RejectionReason.NOT_FOUND: ConflictKind.RECORD_DELETED,
}

ALL_SCOPES = "*"
MAX_BACKOFF_EXPONENT = 32


class SyncCoordinator:
    """Pushes queued mutations and pulls visible records for one session."""

    def __init__(
        self,
        engine: "LifecycleEngine",
        remote: RemoteStore,
        session: SessionContext,
        max_attempts: Optional[int] = None,
        backoff_base_seconds: Optional[float] = None,
        backoff_max_seconds: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.engine = engine
        self.queue = engine.queue
        self.remote = remote
        self.session = session
        self.max_attempts = max_attempts or settings.SYNC_MAX_ATTEMPTS
        self.backoff_base = backoff_base_seconds if backoff_base_seconds is not None else settings.SYNC_BACKOFF_BASE_SECONDS
        self.backoff_max = backoff_max_seconds if backoff_max_seconds is not None else settings.SYNC_BACKOFF_MAX_SECONDS
        self._now = clock or datetime.utcnow
        self._state = SyncState.ONLINE
        self._lock = asyncio.Lock()

    # ==================== PUSH ====================

    async def drain(self) -> DrainReport:
        """One pass over the outbound queue."""
        report = DrainReport()
        async with self._lock:
            self._state = SyncState.SYNCING
            reached_remote = True
            finished = False
            try:
                for record_id in self.queue.record_ids_in_order():
                    if not await self._drain_record(record_id, report):
                        reached_remote = False
                finished = True
            finally:
                if not finished:
                    self._state = SyncState.ERROR
                else:
                    self._state = SyncState.ONLINE if reached_remote else SyncState.OFFLINE

        logger.info(
            f"Drain for {self.session.user_id}: pushed={report.pushed} conflicts={report.conflicts} "
            f"retry={report.retry_scheduled} pending={report.sync_pending} blocked={report.skipped_blocked}"
        )
        return report

    async def _drain_record(self, record_id: str, report: DrainReport) -> bool:
        """Deliver one record's entries in order; False when the remote was unreachable."""
        now = self._now()
        for entry in self.queue.entries_for(record_id):
            if entry.status != QueueStatus.PENDING:
                report.skipped_blocked += 1
                return True
            if entry.next_attempt_at is not None and entry.next_attempt_at > now:
                report.sync_pending += 1
                return True

            try:
                result = await self._deliver(entry)
            except TransientNetworkError as e:
                self._schedule_retry(entry, e, report)
                return False

            if result.accepted:
                self.queue.complete(entry)
                report.pushed += 1
                continue

            await self._handle_rejection(entry, result)
            report.conflicts += 1
            return True
        return True

    async def _deliver(self, entry: OutboundMutation) -> RemoteWriteResult:
        if entry.operation == MutationType.DELETE:
            result = await self.remote.delete(entry.record_kind, entry.record_id, entry.based_on_edit_count)
            if not result.accepted and result.reason == RejectionReason.NOT_FOUND:
                # Already gone remotely; the delete has its intended effect
                logger.info(f"Delete of {entry.record_id} found nothing remotely")
                return RemoteWriteResult(accepted=True)
            return result
        return await self.remote.put(entry.payload, entry.based_on_edit_count)

    def backoff_delay(self, attempts: int) -> float:
        # Exponent capped so long outages never overflow the float conversion
        exponent = min(attempts - 1, MAX_BACKOFF_EXPONENT)
        return min(self.backoff_base * (2 ** exponent), self.backoff_max)

    def _schedule_retry(self, entry: OutboundMutation, error: TransientNetworkError, report: DrainReport) -> None:
        attempts = entry.attempts + 1
        delay = self.backoff_delay(attempts)
        self.queue.schedule_retry(entry, error.message, self._now() + timedelta(seconds=delay))

        if attempts >= self.max_attempts:
            # Never abandoned; keeps retrying at the capped interval
            report.sync_pending += 1
            logger.warning(
                f"{entry.record_id} still unsynced after {attempts} attempts, "
                f"retrying every {delay:.0f}s: {error.message}"
            )
        else:
            report.retry_scheduled += 1
            logger.info(f"Retry {attempts} for {entry.record_id} in {delay:.1f}s")
        report.errors.append({"recordId": entry.record_id, "error": error.message, "attempts": attempts})

    async def _handle_rejection(self, entry: OutboundMutation, result: RemoteWriteResult) -> SyncConflict:
        reason = result.reason or RejectionReason.VALIDATION_FAILURE
        local = self.engine.peek(entry.record_kind, entry.record_id)
        local_data = local.to_document() if local is not None else entry.payload

        remote_doc = result.record
        remote_known = True
        if remote_doc is None and reason != RejectionReason.NOT_FOUND:
            try:
                remote_doc = await self.remote.fetch(entry.record_kind, entry.record_id)
            except TransientNetworkError as e:
                # Keep the local copy until a later pull can refresh it
                logger.error(f"Could not fetch {entry.record_id} after rejection: {e.message}")
                remote_known = False

        self.queue.fail_and_block(entry, result.message or reason.value)
        conflict = self.queue.record_conflict(
            entry,
            conflict_kind=CONFLICT_KINDS[reason],
            reason=result.message or reason.value,
            local_data=local_data,
            remote_data=remote_doc
        )

        if remote_known:
            if remote_doc is None:
                self.engine.evict(entry.record_kind, entry.record_id)
            else:
                self.engine.apply_remote(remote_doc)

        logger.warning(
            f"Remote rejected {entry.operation.value} of {entry.record_id} ({reason.value}): "
            f"{result.message}; conflict {conflict.id} opened"
        )
        return conflict

    # ==================== PULL ====================

    def visibility_query(self, kind: RecordKind) -> RecordQuery:
        """Remote predicate equivalent to the session's read rule."""
        if self.session.is_admin:
            return RecordQuery(kind=kind)
        return RecordQuery(
            kind=kind,
            equals={"author_id": self.session.user_id},
            members={"scope_key": self.session.scope_keys()}
        )

    async def pull(self) -> PullReport:
        """Refresh the cache from the remote store."""
        report = PullReport()
        if not self.session.is_active:
            return report

        seen_per_scope: Dict[str, int] = {}
        try:
            for kind in RecordKind:
                documents = await self.remote.query(self.visibility_query(kind))
                self._reconcile(kind, documents, report, seen_per_scope)
        except TransientNetworkError:
            self._state = SyncState.OFFLINE
            raise

        report.pulled_at = self._now()
        for key in self._checkpoint_keys():
            self.queue.save_checkpoint(key, report.pulled_at, seen_per_scope.get(key, 0))

        logger.info(
            f"Pull for {self.session.user_id}: fetched={report.fetched} inserted={report.inserted} "
            f"updated={report.updated} evicted={report.evicted} kept_local={report.kept_local}"
        )
        return report

    def _reconcile(
        self,
        kind: RecordKind,
        documents: List[Dict[str, Any]],
        report: PullReport,
        seen_per_scope: Dict[str, int]
    ) -> None:
        remote_ids = set()
        for doc in documents:
            report.fetched += 1
            remote_ids.add(doc["id"])
            key = ALL_SCOPES if self.session.is_admin else scope_key(doc["group_id"], doc["year"])
            seen_per_scope[key] = seen_per_scope.get(key, 0) + 1

            if self.queue.has_outstanding(doc["id"]):
                report.kept_local += 1
                continue

            local = self.engine.peek(kind, doc["id"])
            if local is None:
                self.engine.apply_remote(doc)
                report.inserted += 1
            elif local.edit_count < doc["edit_count"]:
                self.engine.apply_remote(doc)
                report.updated += 1
            elif local.edit_count > doc["edit_count"]:
                report.kept_local += 1

        for local in self.engine.list_visible(self.session, kind):
            if local.id in remote_ids or self.queue.has_outstanding(local.id):
                continue
            self.engine.evict(kind, local.id)
            report.evicted += 1

    def _checkpoint_keys(self) -> List[str]:
        if self.session.is_admin:
            return [ALL_SCOPES]
        return self.session.scope_keys()

    # ==================== ENTRY POINTS ====================

    async def synchronize(self) -> Tuple[DrainReport, Optional[PullReport]]:
        """Push then pull; the pull is skipped while the remote is unreachable."""
        drain_report = await self.drain()
        if self._state == SyncState.OFFLINE:
            return drain_report, None
        try:
            pull_report = await self.pull()
        except TransientNetworkError as e:
            logger.error(f"Pull failed, staying offline: {e.message}")
            return drain_report, None
        return drain_report, pull_report

    def status(self) -> SyncStatusReport:
        counts = self.queue.count_by_status()
        open_conflicts = len(self.queue.open_conflicts())

        state = self._state
        if state == SyncState.ONLINE and (counts[QueueStatus.FAILED] or open_conflicts):
            state = SyncState.ERROR

        pulled = [
            checkpoint.last_pulled_at
            for checkpoint in (self.queue.get_checkpoint(key) for key in self._checkpoint_keys())
            if checkpoint is not None and checkpoint.last_pulled_at is not None
        ]
        return SyncStatusReport(
            state=state,
            pending=counts[QueueStatus.PENDING],
            blocked=counts[QueueStatus.BLOCKED],
            failed=counts[QueueStatus.FAILED],
            open_conflicts=open_conflicts,
            last_pulled_at=min(pulled) if pulled else None
        )

    def open_conflicts(self) -> List[SyncConflict]:
        return self.queue.open_conflicts()

    def acknowledge_conflict(self, conflict_id: int) -> SyncConflict:
        """The user has seen the conflict; drop the record's held-back entries."""
        conflict = self.queue.get_conflict(conflict_id)
        if conflict is None:
            raise NotFound(f"Conflict {conflict_id} not found")
        if conflict.acknowledged_at is None:
            discarded = self.queue.discard_outstanding(conflict.record_id)
            conflict.acknowledged_at = self._now()
            self.queue.db.commit()
            logger.info(
                f"Conflict {conflict_id} on {conflict.record_id} acknowledged; "
                f"{discarded} queued change(s) discarded"
            )
        return conflict
