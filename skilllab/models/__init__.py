from .user import User, UserRole, TrainerAssignment
from .student import Student, Group
from .records import (
    AttendanceRecord, AssessmentRecord, LifecycleState, RecordKind,
    AttendanceStatus, AssessmentType, RECORD_MODELS
)
from .sync_metadata import (
    OutboundMutation, SyncConflict, SyncCheckpoint,
    MutationType, QueueStatus, ConflictKind
)

__all__ = [
    "User",
    "UserRole",
    "TrainerAssignment",
    "Student",
    "Group",
    "AttendanceRecord",
    "AssessmentRecord",
    "LifecycleState",
    "RecordKind",
    "AttendanceStatus",
    "AssessmentType",
    "RECORD_MODELS",
    "OutboundMutation",
    "SyncConflict",
    "SyncCheckpoint",
    "MutationType",
    "QueueStatus",
    "ConflictKind",
]
