from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Boolean, Integer, Float, JSON
from sqlalchemy.orm import relationship

from ..core.database import Base
from ..utils.timezone import utc_now


class QuestionType:
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"

    ALL = (MULTIPLE_CHOICE, TRUE_FALSE, SHORT_ANSWER)


class Exam(Base):
    __tablename__ = "exams"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    subject = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    instructor_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    duration = Column(Integer, nullable=False)  # minutes
    total_marks = Column(Float, nullable=False)
    passing_marks = Column(Float, nullable=False)
    start_time = Column(DateTime, nullable=True)
    end_time = Column(DateTime, nullable=True)
    is_published = Column(Boolean, default=False, index=True)
    allow_multiple_attempts = Column(Boolean, default=False)

    # Anti-cheat configuration
    webcam_required = Column(Boolean, default=True)
    tab_switch_limit = Column(Integer, nullable=True)
    screenshot_detection = Column(Boolean, default=True)
    fullscreen_required = Column(Boolean, default=True)
    copy_paste_blocked = Column(Boolean, default=True)
    devtools_blocked = Column(Boolean, default=True)

    created_at = Column(DateTime, default=utc_now)

    instructor = relationship("User", back_populates="exams", lazy="selectin")
    questions = relationship(
        "Question",
        back_populates="exam",
        order_by="Question.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def get_question(self, question_id: int):
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    @property
    def anti_cheat_settings(self) -> dict:
        return {
            "webcam_required": self.webcam_required,
            "tab_switch_limit": self.tab_switch_limit,
            "screenshot_detection": self.screenshot_detection,
            "fullscreen_required": self.fullscreen_required,
            "copy_paste_blocked": self.copy_paste_blocked,
            "devtools_blocked": self.devtools_blocked,
        }


class Question(Base):
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    exam_id = Column(Integer, ForeignKey("exams.id", ondelete="CASCADE"), index=True)
    position = Column(Integer, default=0)
    question_type = Column(String, nullable=False)
    question_text = Column(Text, nullable=False)
    options = Column(JSON, nullable=True)
    correct_answer = Column(Text, nullable=False)
    marks = Column(Float, default=1)
    explanation = Column(Text, nullable=True)

    exam = relationship("Exam", back_populates="questions")
