from .user import User, UserCreate
from .exam import (
    AntiCheatSettings,
    Exam,
    ExamCreate,
    ExamList,
    ExamSummary,
    ExamUpdate,
    Question,
    QuestionCreate,
    SanitizedExam,
    SanitizedQuestion,
)
from .attempt import (
    ActivityCreate,
    ActivityLog,
    AnswerRequest,
    Attempt,
    AttemptDetail,
    ExamAttemptListItem,
    MyAttempt,
    SnapshotRequest,
    StartAttemptResponse,
    StudentAttemptDetail,
    SubmitRequest,
    SubmitResult,
    ViolationCreate,
    ViolationResult,
)
from .dashboard import InstructorDashboard, StudentDashboard

__all__ = [
    "User",
    "UserCreate",
    "AntiCheatSettings",
    "Exam",
    "ExamCreate",
    "ExamList",
    "ExamSummary",
    "ExamUpdate",
    "Question",
    "QuestionCreate",
    "SanitizedExam",
    "SanitizedQuestion",
    "ActivityCreate",
    "ActivityLog",
    "AnswerRequest",
    "Attempt",
    "AttemptDetail",
    "ExamAttemptListItem",
    "MyAttempt",
    "SnapshotRequest",
    "StartAttemptResponse",
    "StudentAttemptDetail",
    "SubmitRequest",
    "SubmitResult",
    "ViolationCreate",
    "ViolationResult",
    "InstructorDashboard",
    "StudentDashboard",
]
