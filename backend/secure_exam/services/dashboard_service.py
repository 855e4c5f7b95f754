from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from typing import Any, Dict
import logging
import math

from ..models.attempt import AttemptStatus, ExamAttempt, Violation
from ..models.exam import Exam
from ..models.user import User, UserRole

logger = logging.getLogger(__name__)

RECENT_VIOLATIONS_LIMIT = 10
RECENT_ATTEMPTS_LIMIT = 5


def _round_average(value) -> int:
    if value is None:
        return 0
    return int(math.floor(float(value) + 0.5))


class DashboardService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _count(self, query) -> int:
        return (await self.db.execute(query)).scalar_one()

    async def instructor_dashboard(self, caller: User) -> Dict[str, Any]:
        """Counts over the caller's exams (every exam for admins), plus live monitoring lists."""
        exam_filter = []
        attempt_filter = []
        if caller.role != UserRole.ADMIN:
            exam_filter.append(Exam.instructor_id == caller.id)
            attempt_filter.append(
                ExamAttempt.exam_id.in_(select(Exam.id).where(Exam.instructor_id == caller.id))
            )

        total_exams = await self._count(select(func.count(Exam.id)).where(*exam_filter))
        published_exams = await self._count(
            select(func.count(Exam.id)).where(*exam_filter, Exam.is_published.is_(True))
        )

        attempts = select(func.count(ExamAttempt.id)).where(*attempt_filter)
        total_attempts = await self._count(attempts)
        flagged_attempts = await self._count(attempts.where(ExamAttempt.flagged.is_(True)))
        completed_attempts = await self._count(
            attempts.where(ExamAttempt.status.in_(AttemptStatus.COMPLETED))
        )
        active_attempts = await self._count(
            attempts.where(ExamAttempt.status == AttemptStatus.IN_PROGRESS)
        )

        avg_score = (await self.db.execute(
            select(func.avg(ExamAttempt.percentage)).where(
                *attempt_filter, ExamAttempt.status.in_(AttemptStatus.COMPLETED)
            )
        )).scalar()

        recent_violations = await self.db.execute(
            select(ExamAttempt)
            .join(Violation, Violation.attempt_id == ExamAttempt.id)
            .where(*attempt_filter)
            .group_by(ExamAttempt.id)
            .order_by(func.max(Violation.timestamp).desc(), ExamAttempt.id.desc())
            .limit(RECENT_VIOLATIONS_LIMIT)
        )
        active = await self.db.execute(
            select(ExamAttempt)
            .where(*attempt_filter, ExamAttempt.status == AttemptStatus.IN_PROGRESS)
            .order_by(ExamAttempt.started_at.desc(), ExamAttempt.id.desc())
        )

        return {
            "stats": {
                "total_exams": total_exams,
                "published_exams": published_exams,
                "total_attempts": total_attempts,
                "completed_attempts": completed_attempts,
                "active_attempts": active_attempts,
                "flagged_attempts": flagged_attempts,
                "avg_score": _round_average(avg_score),
            },
            "recent_violations": list(recent_violations.scalars().all()),
            "active_attempts": list(active.scalars().all()),
        }

    async def student_dashboard(self, student: User) -> Dict[str, Any]:
        result = await self.db.execute(
            select(ExamAttempt)
            .where(ExamAttempt.student_id == student.id)
            .order_by(ExamAttempt.started_at.desc(), ExamAttempt.id.desc())
        )
        attempts = list(result.scalars().all())
        completed = [a for a in attempts if a.status in AttemptStatus.COMPLETED]
        avg_score = sum(a.percentage or 0 for a in completed) / len(completed) if completed else None
        passed = sum(1 for a in completed if a.passed)

        exams = await self.db.execute(
            select(Exam)
            .where(Exam.is_published.is_(True))
            .order_by(Exam.created_at.desc(), Exam.id.desc())
        )

        return {
            "stats": {
                "total_attempts": len(attempts),
                "completed": len(completed),
                "avg_score": _round_average(avg_score),
                "passed": passed,
                "failed": len(completed) - passed,
            },
            "recent_attempts": attempts[:RECENT_ATTEMPTS_LIMIT],
            "available_exams": list(exams.scalars().all()),
        }
