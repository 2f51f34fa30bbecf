"""
API endpoints of the shared record document store
"""

from fastapi import APIRouter, HTTPException, Depends, Query, Request, status
from fastapi.responses import JSONResponse
import logging

from skilllab.core.security import get_session_context
from skilllab.models.records import RecordKind
from skilllab.remote.document_store import RemoteDocumentStore
from skilllab.schemas.sync import (
    RecordQuery,
    RecordQueryResponse,
    RemoteWriteRequest,
    RemoteWriteResult,
    RejectionReason
)
from skilllab.security.session import SessionContext

logger = logging.getLogger(__name__)
router = APIRouter()

REJECTION_STATUS = {
    RejectionReason.PERMISSION_DENIED: status.HTTP_403_FORBIDDEN,
    RejectionReason.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    RejectionReason.STALE_WRITE: status.HTTP_409_CONFLICT,
    RejectionReason.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    RejectionReason.VALIDATION_FAILURE: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def get_document_store(request: Request) -> RemoteDocumentStore:
    return request.app.state.document_store


def _respond(result: RemoteWriteResult) -> JSONResponse:
    status_code = status.HTTP_200_OK if result.accepted else REJECTION_STATUS[result.reason]
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))


@router.put("/{kind}/{record_id}", response_model=RemoteWriteResult)
async def put_record(
    kind: RecordKind,
    record_id: str,
    body: RemoteWriteRequest,
    store: RemoteDocumentStore = Depends(get_document_store),
    actor: SessionContext = Depends(get_session_context)
):
    """Create or replace a record document, guarded by the stored edit count"""
    if body.document.get("kind") != kind.value or body.document.get("id") != record_id:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Document kind/id do not match the URL"
        )

    result = await store.put(actor, body.document, body.expected_edit_count)
    return _respond(result)


@router.delete("/{kind}/{record_id}", response_model=RemoteWriteResult)
async def delete_record(
    kind: RecordKind,
    record_id: str,
    expected_edit_count: int = Query(..., ge=0),
    store: RemoteDocumentStore = Depends(get_document_store),
    actor: SessionContext = Depends(get_session_context)
):
    result = await store.delete(actor, kind, record_id, expected_edit_count)
    return _respond(result)


@router.post("/query", response_model=RecordQueryResponse)
async def query_records(
    query: RecordQuery,
    store: RemoteDocumentStore = Depends(get_document_store),
    actor: SessionContext = Depends(get_session_context)
):
    """Records matching the predicate that the caller may read"""
    try:
        records = await store.query(actor, query)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    logger.debug(f"Query {query.kind.value} by {actor.user_id}: {len(records)} record(s)")
    return RecordQueryResponse(records=records, count=len(records))
