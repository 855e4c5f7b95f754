from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, delete
from typing import List, Optional, Tuple
import logging
import math

from ..core.exceptions import Forbidden, NotFound, ValidationError
from ..models.activity_log import ActivityLog
from ..models.attempt import ExamAttempt
from ..models.exam import Exam, Question, QuestionType
from ..models.user import User, UserRole
from ..schemas.exam import ExamCreate, ExamUpdate, QuestionCreate, AntiCheatSettings
from ..utils.timezone import to_naive_utc

logger = logging.getLogger(__name__)

REQUIRED_EXAM_FIELDS = (
    "title",
    "subject",
    "duration",
    "total_marks",
    "passing_marks",
    "is_published",
    "allow_multiple_attempts",
)


class ExamService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_exam(self, exam_id: int, refresh: bool = False) -> Exam:
        query = select(Exam).filter(Exam.id == exam_id)
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        exam = result.scalars().first()
        if not exam:
            raise NotFound("Exam not found")
        return exam

    async def list_exams(self, caller: User, page: int = 1, limit: int = 20) -> Tuple[List[Exam], int, int]:
        """Students see published exams, instructors their own, admins everything."""
        page = max(page, 1)
        limit = max(min(limit, 100), 1)

        query = select(Exam)
        count_query = select(func.count(Exam.id))
        if caller.role == UserRole.STUDENT:
            query = query.filter(Exam.is_published.is_(True))
            count_query = count_query.filter(Exam.is_published.is_(True))
        elif caller.role == UserRole.INSTRUCTOR:
            query = query.filter(Exam.instructor_id == caller.id)
            count_query = count_query.filter(Exam.instructor_id == caller.id)

        result = await self.db.execute(
            query.order_by(Exam.created_at.desc(), Exam.id.desc()).offset((page - 1) * limit).limit(limit)
        )
        total = (await self.db.execute(count_query)).scalar_one()
        pages = math.ceil(total / limit) if total else 0
        return list(result.scalars().all()), total, pages

    async def create_exam(self, exam_data: ExamCreate, instructor: User) -> Exam:
        if not exam_data.questions:
            raise ValidationError("At least one question is required")
        _validate_exam_fields(
            exam_data.total_marks, exam_data.passing_marks, exam_data.start_time, exam_data.end_time
        )
        for question in exam_data.questions:
            _validate_question(question)

        exam = Exam(
            title=exam_data.title,
            subject=exam_data.subject,
            description=exam_data.description,
            instructor=instructor,
            duration=exam_data.duration,
            total_marks=exam_data.total_marks,
            passing_marks=exam_data.passing_marks,
            start_time=to_naive_utc(exam_data.start_time),
            end_time=to_naive_utc(exam_data.end_time),
            is_published=exam_data.is_published,
            allow_multiple_attempts=exam_data.allow_multiple_attempts,
            questions=[_build_question(q, position) for position, q in enumerate(exam_data.questions)],
        )
        _apply_anti_cheat(exam, exam_data.anti_cheat_settings)

        self.db.add(exam)
        await self.db.commit()
        logger.info(f"Exam {exam.id} created by instructor {instructor.id}")
        return await self.get_exam(exam.id, refresh=True)

    async def update_exam(self, exam_id: int, exam_data: ExamUpdate, caller: User) -> Exam:
        """Explicit instructor edit. Questions keep their ids when sent back with them."""
        exam = await self.get_exam(exam_id)
        _ensure_can_edit(exam, caller)

        update_data = exam_data.model_dump(exclude_unset=True, exclude={"questions", "anti_cheat_settings"})
        nulls = [field for field in REQUIRED_EXAM_FIELDS if field in update_data and update_data[field] is None]
        if nulls:
            raise ValidationError(f"{', '.join(nulls)} cannot be null")
        for field in ("start_time", "end_time"):
            if field in update_data:
                update_data[field] = to_naive_utc(update_data[field])
        _validate_exam_fields(
            update_data.get("total_marks", exam.total_marks),
            update_data.get("passing_marks", exam.passing_marks),
            update_data.get("start_time", exam.start_time),
            update_data.get("end_time", exam.end_time),
        )
        if exam_data.questions is not None:
            if not exam_data.questions:
                raise ValidationError("At least one question is required")
            for question in exam_data.questions:
                _validate_question(question)

        for field, value in update_data.items():
            setattr(exam, field, value)
        if exam_data.anti_cheat_settings is not None:
            _apply_anti_cheat(exam, exam_data.anti_cheat_settings)
        if exam_data.questions is not None:
            self._replace_questions(exam, exam_data.questions)

        await self.db.commit()
        logger.info(f"Exam {exam.id} updated by user {caller.id}")
        return await self.get_exam(exam.id, refresh=True)

    def _replace_questions(self, exam: Exam, questions: List[QuestionCreate]) -> None:
        current = {q.id: q for q in exam.questions}
        kept = []
        for position, data in enumerate(questions):
            question = current.get(data.id) if data.id is not None else None
            if question is None:
                question = _build_question(data, position)
            else:
                question.position = position
                question.question_type = data.question_type
                question.question_text = data.question_text
                question.options = data.options
                question.correct_answer = data.correct_answer
                question.marks = data.marks
                question.explanation = data.explanation
            kept.append(question)
        exam.questions = kept

    async def delete_exam(self, exam_id: int, caller: User) -> None:
        """Delete an exam together with its questions, attempts and activity."""
        exam = await self.get_exam(exam_id)
        _ensure_can_edit(exam, caller)

        await self.db.execute(delete(ActivityLog).where(ActivityLog.exam_id == exam_id))
        result = await self.db.execute(select(ExamAttempt).filter(ExamAttempt.exam_id == exam_id))
        attempts = result.scalars().all()
        for attempt in attempts:
            await self.db.delete(attempt)
        await self.db.delete(exam)
        await self.db.commit()
        logger.info(f"Exam {exam_id} deleted with {len(attempts)} attempts by user {caller.id}")


def _ensure_can_edit(exam: Exam, caller: User) -> None:
    if caller.role not in UserRole.STAFF:
        raise Forbidden("Access denied. Insufficient role.")
    if exam.instructor_id != caller.id and caller.role != UserRole.ADMIN:
        raise Forbidden("Not authorized")


def _validate_exam_fields(total_marks, passing_marks, start_time, end_time) -> None:
    if passing_marks is not None and total_marks is not None and passing_marks > total_marks:
        raise ValidationError("passing_marks cannot exceed total_marks")
    if start_time and end_time and to_naive_utc(end_time) <= to_naive_utc(start_time):
        raise ValidationError("end_time must be after start_time")


def _validate_question(question: QuestionCreate) -> None:
    if question.question_type == QuestionType.MULTIPLE_CHOICE and not question.options:
        raise ValidationError("Multiple choice questions need options")


def _build_question(data: QuestionCreate, position: int) -> Question:
    return Question(
        position=position,
        question_type=data.question_type,
        question_text=data.question_text,
        options=data.options,
        correct_answer=data.correct_answer,
        marks=data.marks,
        explanation=data.explanation,
    )


def _apply_anti_cheat(exam: Exam, anti_cheat: Optional[AntiCheatSettings]) -> None:
    if anti_cheat is None:
        return
    for field, value in anti_cheat.model_dump().items():
        setattr(exam, field, value)
