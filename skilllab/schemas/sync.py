"""
Pydantic schemas for the remote store wire format and sync reports
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Dict, Any, Optional
from enum import Enum

from skilllab.models.records import RecordKind


class RejectionReason(str, Enum):
    """Why the remote store refused a write"""
    STALE_WRITE = "stale_write"
    PERMISSION_DENIED = "permission_denied"
    INVALID_TRANSITION = "invalid_transition"
    VALIDATION_FAILURE = "validation_failure"
    NOT_FOUND = "not_found"


class SyncState(str, Enum):
    """Connectivity indicator shown to the user"""
    ONLINE = "online"
    OFFLINE = "offline"
    SYNCING = "syncing"
    ERROR = "error"


class RecordQuery(BaseModel):
    """Equality / membership predicate over stored documents"""
    kind: RecordKind
    equals: Dict[str, Any] = Field(default_factory=dict)
    members: Dict[str, List[Any]] = Field(default_factory=dict)

    class Config:
        json_schema_extra = {
            "example": {
                "kind": "attendance",
                "equals": {"author_id": "trainer-1"},
                "members": {"scope_key": ["group-1:2024"]}
            }
        }


class RemoteWriteRequest(BaseModel):
    """Proposed document plus the edit count it was based on"""
    document: Dict[str, Any]
    expected_edit_count: Optional[int] = Field(None, ge=0)


class RemoteDeleteRequest(BaseModel):
    expected_edit_count: int = Field(..., ge=0)


class RemoteWriteResult(BaseModel):
    """Outcome of a put/delete against the remote store"""
    accepted: bool
    record: Optional[Dict[str, Any]] = None
    reason: Optional[RejectionReason] = None
    message: Optional[str] = None

    @property
    def edit_count(self) -> Optional[int]:
        if self.record is None:
            return None
        return self.record.get("edit_count")


class RecordQueryResponse(BaseModel):
    records: List[Dict[str, Any]]
    count: int


class DrainReport(BaseModel):
    """Result of one pass over the outbound queue"""
    pushed: int = 0
    conflicts: int = 0
    retry_scheduled: int = 0
    sync_pending: int = 0
    skipped_blocked: int = 0
    errors: List[Dict[str, Any]] = []


class PullReport(BaseModel):
    fetched: int = 0
    updated: int = 0
    inserted: int = 0
    evicted: int = 0
    kept_local: int = 0
    pulled_at: Optional[datetime] = None


class SyncStatusReport(BaseModel):
    state: SyncState
    pending: int
    blocked: int
    failed: int
    open_conflicts: int
    last_pulled_at: Optional[datetime] = None
