from pydantic import BaseModel
from datetime import datetime
from typing import List, Optional

from .attempt import ExamBrief, MyAttempt, StudentSummary, Violation, WebcamSnapshot


class InstructorStats(BaseModel):
    total_exams: int
    published_exams: int
    total_attempts: int
    completed_attempts: int
    active_attempts: int
    flagged_attempts: int
    avg_score: int


class AttemptViolations(BaseModel):
    id: int
    status: str
    student: Optional[StudentSummary] = None
    exam: Optional[ExamBrief] = None
    violations: List[Violation] = []
    tab_switches: int = 0
    flagged: bool = False

    class Config:
        from_attributes = True


class ActiveAttempt(BaseModel):
    id: int
    started_at: datetime
    student: Optional[StudentSummary] = None
    exam: Optional[ExamBrief] = None
    violations: List[Violation] = []
    tab_switches: int = 0
    webcam_snapshots: List[WebcamSnapshot] = []

    class Config:
        from_attributes = True


class InstructorDashboard(BaseModel):
    stats: InstructorStats
    recent_violations: List[AttemptViolations]
    active_attempts: List[ActiveAttempt]


class StudentStats(BaseModel):
    total_attempts: int
    completed: int
    avg_score: int
    passed: int
    failed: int


class AvailableExam(BaseModel):
    id: int
    title: str
    subject: str
    duration: int
    total_marks: float
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    class Config:
        from_attributes = True


class StudentDashboard(BaseModel):
    stats: StudentStats
    recent_attempts: List[MyAttempt]
    available_exams: List[AvailableExam]
