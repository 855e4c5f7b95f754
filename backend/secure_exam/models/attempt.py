from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Boolean, Integer, Float, JSON, UniqueConstraint
from sqlalchemy.orm import relationship

from ..core.database import Base
from ..utils.timezone import utc_now


class AttemptStatus:
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    AUTO_SUBMITTED = "auto_submitted"
    FLAGGED = "flagged"
    CANCELLED = "cancelled"

    ALL = (IN_PROGRESS, SUBMITTED, AUTO_SUBMITTED, FLAGGED, CANCELLED)
    TERMINAL = (SUBMITTED, AUTO_SUBMITTED, CANCELLED)
    COMPLETED = (SUBMITTED, AUTO_SUBMITTED)


class ViolationType:
    TAB_SWITCH = "tab_switch"
    WINDOW_BLUR = "window_blur"
    COPY_PASTE = "copy_paste"
    RIGHT_CLICK = "right_click"
    DEVTOOLS = "devtools"
    SCREENSHOT = "screenshot"
    FULLSCREEN_EXIT = "fullscreen_exit"
    RESIZE = "resize"

    ALL = (TAB_SWITCH, WINDOW_BLUR, COPY_PASTE, RIGHT_CLICK, DEVTOOLS, SCREENSHOT, FULLSCREEN_EXIT, RESIZE)


class Severity:
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    ALL = (LOW, MEDIUM, HIGH, CRITICAL)


class ExamAttempt(Base):
    __tablename__ = "exam_attempts"

    id = Column(Integer, primary_key=True, index=True)
    exam_id = Column(Integer, ForeignKey("exams.id", ondelete="CASCADE"), index=True, nullable=False)
    student_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    status = Column(String, default=AttemptStatus.IN_PROGRESS, index=True, nullable=False)

    started_at = Column(DateTime, default=utc_now)
    submitted_at = Column(DateTime, nullable=True)
    last_activity_at = Column(DateTime, default=utc_now)
    time_spent = Column(Integer, nullable=True)  # seconds

    score = Column(Float, default=0)
    total_marks = Column(Float, nullable=True)
    percentage = Column(Integer, default=0)
    passed = Column(Boolean, default=False)

    tab_switches = Column(Integer, default=0)
    flagged = Column(Boolean, default=False, index=True)
    flag_reason = Column(String, nullable=True)

    # Bumped on every write; a flush against a stale version raises StaleDataError
    version = Column(Integer, nullable=False)

    exam = relationship("Exam", lazy="selectin")
    student = relationship("User", back_populates="attempts", lazy="selectin")
    answers = relationship(
        "Answer",
        back_populates="attempt",
        order_by="Answer.sequence",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    violations = relationship(
        "Violation",
        back_populates="attempt",
        order_by="Violation.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    webcam_snapshots = relationship(
        "WebcamSnapshot",
        back_populates="attempt",
        order_by="WebcamSnapshot.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_active(self) -> bool:
        return self.status == AttemptStatus.IN_PROGRESS

    @property
    def violation_count(self) -> int:
        return len(self.violations)

    def __repr__(self):
        return f"<ExamAttempt {self.id} exam={self.exam_id} student={self.student_id} {self.status}>"


class Answer(Base):
    __tablename__ = "answers"
    __table_args__ = (UniqueConstraint("attempt_id", "question_id", name="uq_answer_attempt_question"),)

    id = Column(Integer, primary_key=True, index=True)
    attempt_id = Column(Integer, ForeignKey("exam_attempts.id", ondelete="CASCADE"), index=True, nullable=False)
    question_id = Column(Integer, nullable=False)
    answer = Column(JSON, nullable=True)
    is_correct = Column(Boolean, nullable=True)
    marks_awarded = Column(Float, default=0)
    time_spent = Column(Integer, nullable=True)  # seconds on this question
    sequence = Column(Integer, nullable=False, default=0)

    attempt = relationship("ExamAttempt", back_populates="answers")


class Violation(Base):
    __tablename__ = "violations"

    id = Column(Integer, primary_key=True, index=True)
    attempt_id = Column(Integer, ForeignKey("exam_attempts.id", ondelete="CASCADE"), index=True, nullable=False)
    violation_type = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    severity = Column(String, default=Severity.MEDIUM)
    timestamp = Column(DateTime, default=utc_now)

    attempt = relationship("ExamAttempt", back_populates="violations")

    def __repr__(self):
        return f"<Violation {self.violation_type} for attempt {self.attempt_id}>"


class WebcamSnapshot(Base):
    __tablename__ = "webcam_snapshots"

    id = Column(Integer, primary_key=True, index=True)
    attempt_id = Column(Integer, ForeignKey("exam_attempts.id", ondelete="CASCADE"), index=True, nullable=False)
    url = Column(String, nullable=False)
    timestamp = Column(DateTime, default=utc_now)

    attempt = relationship("ExamAttempt", back_populates="webcam_snapshots")
