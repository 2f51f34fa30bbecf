from pydantic import BaseModel, Field, validator
import datetime as dt
from typing import Optional, List, Dict, Any

from skilllab.models.records import AttendanceStatus, AssessmentType, RecordKind


# Record creation
class RecordCreateBase(BaseModel):
    id: Optional[str] = Field(None, max_length=64, description="Client-generated id; assigned when omitted")
    student_id: str = Field(..., min_length=1, max_length=64)
    group_id: str = Field(..., min_length=1, max_length=64)
    year: int = Field(..., ge=1)
    author_id: Optional[str] = Field(None, description="Admin entry on behalf of a trainer")
    unit: Optional[str] = Field(None, max_length=20)
    notes: Optional[str] = Field(None, max_length=500)

    class Config:
        extra = "forbid"


class AttendanceCreate(RecordCreateBase):
    date: dt.date
    status: AttendanceStatus = AttendanceStatus.PRESENT


class AssessmentCreate(RecordCreateBase):
    assessment_name: str = Field(..., min_length=1, max_length=200)
    assessment_type: AssessmentType
    max_score: float = Field(100.0, gt=0)
    score: float = Field(..., ge=0)
    date: dt.date
    week: Optional[int] = Field(None, ge=1, le=10)
    is_excused: bool = False

    @validator("assessment_name")
    def strip_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("assessment name must not be blank")
        return v

    @validator("score")
    def score_within_max(cls, v, values):
        max_score = values.get("max_score")
        if max_score is not None and v > max_score:
            raise ValueError(f"score {v} exceeds max score {max_score}")
        return v


# Record patches: only payload fields, identity and lifecycle fields are not patchable
class AttendancePatch(BaseModel):
    date: Optional[dt.date] = None
    status: Optional[AttendanceStatus] = None
    unit: Optional[str] = Field(None, max_length=20)
    notes: Optional[str] = Field(None, max_length=500)

    class Config:
        extra = "forbid"

    @validator("date", "status", pre=True)
    def required_not_cleared(cls, v):
        if v is None:
            raise ValueError("field is required and cannot be cleared")
        return v


class AssessmentPatch(BaseModel):
    assessment_name: Optional[str] = Field(None, min_length=1, max_length=200)
    assessment_type: Optional[AssessmentType] = None
    max_score: Optional[float] = Field(None, gt=0)
    score: Optional[float] = Field(None, ge=0)
    date: Optional[dt.date] = None
    week: Optional[int] = Field(None, ge=1, le=10)
    unit: Optional[str] = Field(None, max_length=20)
    notes: Optional[str] = Field(None, max_length=500)
    is_excused: Optional[bool] = None

    class Config:
        extra = "forbid"

    @validator("assessment_name", "assessment_type", "score", "max_score", "date", "is_excused", pre=True)
    def required_not_cleared(cls, v):
        if v is None:
            raise ValueError("field is required and cannot be cleared")
        return v


# Stored document payloads, checked server side against the full record contents
class AttendancePayload(BaseModel):
    date: dt.date
    status: AttendanceStatus
    unit: Optional[str] = Field(None, max_length=20)
    notes: Optional[str] = Field(None, max_length=500)

    class Config:
        extra = "forbid"


class AssessmentPayload(BaseModel):
    assessment_name: str = Field(..., min_length=1, max_length=200)
    assessment_type: AssessmentType
    score: float = Field(..., ge=0)
    max_score: float = Field(..., gt=0)
    date: dt.date
    week: Optional[int] = Field(None, ge=1, le=10)
    unit: Optional[str] = Field(None, max_length=20)
    notes: Optional[str] = Field(None, max_length=500)
    is_excused: bool

    class Config:
        extra = "forbid"

    @validator("max_score")
    def score_within_max(cls, v, values):
        score = values.get("score")
        if score is not None and score > v:
            raise ValueError(f"score {score} exceeds max score {v}")
        return v


CREATE_SCHEMAS = {
    RecordKind.ATTENDANCE: AttendanceCreate,
    RecordKind.ASSESSMENT: AssessmentCreate,
}

PATCH_SCHEMAS = {
    RecordKind.ATTENDANCE: AttendancePatch,
    RecordKind.ASSESSMENT: AssessmentPatch,
}

PAYLOAD_SCHEMAS = {
    RecordKind.ATTENDANCE: AttendancePayload,
    RecordKind.ASSESSMENT: AssessmentPayload,
}


# Batch export
class ExportRejection(BaseModel):
    record_id: str
    error_kind: str
    reason: str


class ExportBatchResult(BaseModel):
    succeeded: List[str] = []
    rejected: List[ExportRejection] = []

    @property
    def rejected_ids(self) -> List[str]:
        return [item.record_id for item in self.rejected]


# Student directory
class StudentCreate(BaseModel):
    id: Optional[str] = Field(None, max_length=64)
    name: str = Field(..., min_length=2, max_length=100)
    student_number: Optional[str] = Field(None, min_length=1, max_length=20, pattern=r"^[A-Za-z0-9-]+$")
    email: Optional[str] = Field(None, max_length=255)
    group_id: str = Field(..., min_length=1, max_length=64)
    year: int = Field(..., ge=1)
    unit: Optional[str] = Field(None, max_length=20)

    @validator("name")
    def strip_student_name(cls, v):
        return v.strip()


# Presentation-layer envelope
class IntentResponse(BaseModel):
    success: bool
    data: Optional[Any] = None
    errorKind: Optional[str] = None
    message: Optional[str] = None

    def envelope(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        return {"success": False, "errorKind": self.errorKind, "message": self.message}
