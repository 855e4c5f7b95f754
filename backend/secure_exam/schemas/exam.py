from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import Any, List, Optional

from ..models.exam import QuestionType


class AntiCheatSettings(BaseModel):
    webcam_required: bool = True
    tab_switch_limit: Optional[int] = Field(default=None, ge=0)
    screenshot_detection: bool = True
    fullscreen_required: bool = True
    copy_paste_blocked: bool = True
    devtools_blocked: bool = True

    class Config:
        from_attributes = True


class QuestionBase(BaseModel):
    question_type: str
    question_text: str
    options: Optional[List[str]] = None
    marks: float = Field(default=1, ge=0)

    @field_validator("question_type")
    @classmethod
    def check_question_type(cls, value: str) -> str:
        if value not in QuestionType.ALL:
            raise ValueError(f"question_type must be one of {', '.join(QuestionType.ALL)}")
        return value


class QuestionCreate(QuestionBase):
    id: Optional[int] = None
    correct_answer: Any
    explanation: Optional[str] = None

    @field_validator("correct_answer")
    @classmethod
    def stringify_answer(cls, value: Any) -> str:
        if value is None or str(value).strip() == "":
            raise ValueError("correct_answer is required")
        return str(value)


class SanitizedQuestion(QuestionBase):
    """A question as a student sees it while answering."""

    id: int

    class Config:
        from_attributes = True


class Question(SanitizedQuestion):
    correct_answer: str
    explanation: Optional[str] = None


class ExamBase(BaseModel):
    title: str
    subject: str
    description: Optional[str] = None
    duration: int = Field(gt=0)
    total_marks: float = Field(gt=0)
    passing_marks: float = Field(gt=0)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    is_published: bool = False
    allow_multiple_attempts: bool = False


class ExamCreate(ExamBase):
    questions: List[QuestionCreate] = []
    anti_cheat_settings: AntiCheatSettings = AntiCheatSettings()


class ExamUpdate(BaseModel):
    title: Optional[str] = None
    subject: Optional[str] = None
    description: Optional[str] = None
    duration: Optional[int] = Field(default=None, gt=0)
    total_marks: Optional[float] = Field(default=None, gt=0)
    passing_marks: Optional[float] = Field(default=None, gt=0)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    is_published: Optional[bool] = None
    allow_multiple_attempts: Optional[bool] = None
    questions: Optional[List[QuestionCreate]] = None
    anti_cheat_settings: Optional[AntiCheatSettings] = None


class InstructorSummary(BaseModel):
    id: int
    full_name: str
    email: str

    class Config:
        from_attributes = True


class ExamSummary(ExamBase):
    id: int
    instructor_id: int
    instructor: Optional[InstructorSummary] = None
    anti_cheat_settings: AntiCheatSettings
    created_at: datetime

    class Config:
        from_attributes = True


class SanitizedExam(ExamSummary):
    questions: List[SanitizedQuestion] = []


class Exam(ExamSummary):
    questions: List[Question] = []


class ExamList(BaseModel):
    exams: List[ExamSummary]
    total: int
    page: int
    pages: int
