from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .exam import Exam, SanitizedExam


class AnswerRequest(BaseModel):
    question_id: int
    answer: Any = None
    time_spent: Optional[int] = Field(default=None, ge=0)


class ViolationCreate(BaseModel):
    type: str
    description: Optional[str] = None
    severity: Optional[str] = None


class SubmitRequest(BaseModel):
    auto_submit: bool = False


class SnapshotRequest(BaseModel):
    image_data: Optional[str] = None


class ActivityEntry(BaseModel):
    type: str
    data: Optional[Dict[str, Any]] = None
    timestamp: Optional[datetime] = None


class ActivityCreate(BaseModel):
    activities: List[ActivityEntry] = []


class StudentSummary(BaseModel):
    id: int
    full_name: str
    email: str

    class Config:
        from_attributes = True


class ExamBrief(BaseModel):
    id: int
    title: str
    subject: str
    duration: int
    total_marks: float
    passing_marks: float

    class Config:
        from_attributes = True


class Answer(BaseModel):
    question_id: int
    answer: Any = None
    is_correct: Optional[bool] = None
    marks_awarded: float = 0
    time_spent: Optional[int] = None

    class Config:
        from_attributes = True


class Violation(BaseModel):
    id: int
    violation_type: str
    description: Optional[str] = None
    severity: str
    timestamp: datetime

    class Config:
        from_attributes = True


class WebcamSnapshot(BaseModel):
    url: str
    timestamp: datetime

    class Config:
        from_attributes = True


class AttemptSummary(BaseModel):
    id: int
    exam_id: int
    student_id: int
    status: str
    started_at: datetime
    submitted_at: Optional[datetime] = None
    time_spent: Optional[int] = None
    score: float = 0
    total_marks: Optional[float] = None
    percentage: int = 0
    passed: bool = False
    tab_switches: int = 0
    flagged: bool = False
    flag_reason: Optional[str] = None

    class Config:
        from_attributes = True


class Attempt(AttemptSummary):
    answers: List[Answer] = []
    violations: List[Violation] = []
    webcam_snapshots: List[WebcamSnapshot] = []


class ExamAttemptListItem(AttemptSummary):
    """An attempt as listed on an exam's results page."""

    student: Optional[StudentSummary] = None
    violation_count: int = 0


class MyAttempt(AttemptSummary):
    exam: Optional[ExamBrief] = None


class AttemptDetail(Attempt):
    student: Optional[StudentSummary] = None
    exam: Optional[Exam] = None


class StudentAttemptDetail(Attempt):
    """Attempt detail with the question bank's answer keys removed."""

    student: Optional[StudentSummary] = None
    exam: Optional[SanitizedExam] = None


class StartAttemptResponse(BaseModel):
    attempt: Attempt
    exam: SanitizedExam
    resumed: bool = False
    snapshot_interval: int


class ViolationResult(BaseModel):
    message: str
    total_violations: int
    tab_switches: int
    flagged: bool


class SubmitResult(BaseModel):
    message: str
    score: float
    total_marks: Optional[float] = None
    percentage: int
    passed: bool
    flagged: bool


class SnapshotResult(BaseModel):
    message: str
    url: str


class ActivityLogEntry(BaseModel):
    id: int
    event_type: str
    event_data: Optional[Dict[str, Any]] = None
    timestamp: datetime

    class Config:
        from_attributes = True


class ActivityLog(BaseModel):
    attempt_id: int
    exam_id: int
    student: Optional[StudentSummary] = None
    activities: List[ActivityLogEntry] = []
