from .user import User, UserRole
from .exam import Exam, Question, QuestionType
from .attempt import ExamAttempt, Answer, Violation, WebcamSnapshot, AttemptStatus, ViolationType, Severity
from .activity_log import ActivityLog

__all__ = [
    "User",
    "UserRole",
    "Exam",
    "Question",
    "QuestionType",
    "ExamAttempt",
    "Answer",
    "Violation",
    "WebcamSnapshot",
    "AttemptStatus",
    "ViolationType",
    "Severity",
    "ActivityLog",
]
