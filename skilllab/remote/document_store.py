"""
Remote document store.

The only writer of the shared store: every put and delete is evaluated by the
``RuleEvaluator`` against the stored document inside one transaction, and
queries are filtered down to what the actor may read.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine

from skilllab.models.records import IDENTITY_FIELDS, RecordKind
from skilllab.remote.models import RemoteDocument, create_remote_session_factory
from skilllab.remote.rule_evaluator import RuleEvaluator
from skilllab.schemas.sync import RecordQuery, RemoteWriteResult, RejectionReason
from skilllab.security.access_control import Operation
from skilllab.security.session import SessionContext

logger = logging.getLogger(__name__)


class RemoteDocumentStore:
    def __init__(self, engine: AsyncEngine, evaluator: Optional[RuleEvaluator] = None):
        self.engine = engine
        self.session_factory = create_remote_session_factory(engine)
        self.evaluator = evaluator or RuleEvaluator()

    async def put(
        self,
        actor: SessionContext,
        document: Dict[str, Any],
        expected_edit_count: Optional[int]
    ) -> RemoteWriteResult:
        """Create or replace a document if the rules and the edit count allow it."""
        proposed = {k: v for k, v in document.items() if k != "scope_key"}
        missing = [name for name in IDENTITY_FIELDS + ("lifecycle_state", "edit_count") if name not in proposed]
        if missing:
            return RemoteWriteResult(
                accepted=False,
                reason=RejectionReason.VALIDATION_FAILURE,
                message=f"document is missing {missing}"
            )
        async with self.session_factory() as db:
            async with db.begin():
                row = await db.get(RemoteDocument, (proposed.get("kind"), proposed.get("id")))
                stored = row.document if row is not None else None

                verdict = self.evaluator.evaluate(actor, stored, proposed, expected_edit_count)
                if not verdict.allowed:
                    return self._rejection(actor, row, verdict.reason, verdict.message)

                if row is None:
                    row = RemoteDocument()
                    db.add(row)
                row.store(proposed, actor.user_id)

            logger.info(
                f"Accepted {verdict.operation.value} of {proposed['kind']}/{proposed['id']} "
                f"by {actor.user_id} at edit {proposed['edit_count']}"
            )
            return RemoteWriteResult(accepted=True, record=row.as_document())

    async def delete(
        self,
        actor: SessionContext,
        kind: RecordKind,
        record_id: str,
        expected_edit_count: int
    ) -> RemoteWriteResult:
        kind = RecordKind(kind)
        async with self.session_factory() as db:
            async with db.begin():
                row = await db.get(RemoteDocument, (kind.value, record_id))
                stored = row.document if row is not None else None

                verdict = self.evaluator.evaluate(actor, stored, None, expected_edit_count)
                if not verdict.allowed:
                    return self._rejection(actor, row, verdict.reason, verdict.message)

                if stored["lifecycle_state"] != "draft":
                    logger.warning(
                        f"Admin {actor.user_id} deleted {stored['lifecycle_state']} "
                        f"{kind.value}/{record_id} (author {stored['author_id']})"
                    )
                await db.delete(row)

            logger.info(f"Deleted {kind.value}/{record_id} by {actor.user_id}")
            return RemoteWriteResult(accepted=True)

    async def query(self, actor: SessionContext, query: RecordQuery) -> List[Dict[str, Any]]:
        """Documents matching the predicate that the actor is allowed to read."""
        stmt = select(RemoteDocument).where(RemoteDocument.kind == RecordKind(query.kind).value)

        for name, value in query.equals.items():
            stmt = stmt.where(self._column(name) == value)
        for name, values in query.members.items():
            if not values:
                return []
            stmt = stmt.where(self._column(name).in_(values))

        stmt = stmt.order_by(RemoteDocument.id)
        async with self.session_factory() as db:
            rows = (await db.execute(stmt)).scalars().all()

        return [
            row.as_document() for row in rows
            if self.evaluator.permits(actor, row.document, Operation.READ)
        ]

    def _rejection(
        self,
        actor: SessionContext,
        row: Optional[RemoteDocument],
        reason: RejectionReason,
        message: str
    ) -> RemoteWriteResult:
        # Hand back the authoritative copy only when the actor may see it
        record = None
        if row is not None and self.evaluator.permits(actor, row.document, Operation.READ):
            record = row.as_document()
        return RemoteWriteResult(accepted=False, record=record, reason=reason, message=message)

    @staticmethod
    def _column(name: str):
        if name not in RemoteDocument.QUERYABLE:
            raise ValueError(f"documents cannot be queried by '{name}'")
        return getattr(RemoteDocument, name)
