"""
Attempt lifecycle: start, answer capture, violation logging, submission.

An attempt starts ``in_progress`` and moves once to ``submitted``,
``auto_submitted`` or ``cancelled``; nothing leads back. ``flagged`` is a
separate boolean that may be set before the terminal transition and is
never cleared.

Every write touches the attempt row, whose ``version`` column is checked
on flush. A writer that loses a race gets ``StaleDataError``, reloads and
either retries (attempt still in progress) or fails with ``InvalidState``.
Inside one worker, writers to the same attempt are also serialised with an
``asyncio.Lock`` so a submit sees every answer saved before it.
"""
import asyncio
import logging
import weakref
from datetime import datetime
from typing import Any, Callable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from ..core.security import Identity
from ..core.exceptions import Conflict, ExamServiceError, Forbidden, InvalidState, NotFound, ValidationError
from ..models.activity_log import ActivityLog
from ..models.attempt import Answer, AttemptStatus, ExamAttempt, Severity, Violation, ViolationType, WebcamSnapshot
from ..models.exam import Exam
from ..models.user import User, UserRole
from ..utils.timezone import to_naive_utc, utc_now
from .grading import compute_percentage, grade_answers, is_passed
from .live_notifications import LiveNotifier
from .snapshot_store import SnapshotStore
from .violation_ledger import (
    ViolationLedger,
    apply_flag,
    effective_tab_switch_limit,
    submit_flag_reason,
    violation_flag_reason,
)

logger = logging.getLogger(__name__)


class AttemptLocks:
    """Per-key asyncio locks, dropped once nobody holds them."""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[Any, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock(self, key) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


class AttemptService:
    MAX_WRITE_RETRIES = 3

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[LiveNotifier] = None,
        locks: Optional[AttemptLocks] = None,
        snapshot_store: Optional[SnapshotStore] = None,
    ):
        self.db = db
        self.notifier = notifier
        self.locks = locks or AttemptLocks()
        self.snapshot_store = snapshot_store or SnapshotStore()

    # ------------------------------------------------------------------
    # Reads

    async def _get_exam(self, exam_id: int) -> Exam:
        result = await self.db.execute(select(Exam).filter(Exam.id == exam_id))
        exam = result.scalars().first()
        if not exam:
            raise NotFound("Exam not found")
        return exam

    async def _get_attempt(self, attempt_id: int, refresh: bool = False) -> ExamAttempt:
        query = select(ExamAttempt).filter(ExamAttempt.id == attempt_id)
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        attempt = result.scalars().first()
        if not attempt:
            raise NotFound("Attempt not found")
        return attempt

    async def get_attempt(self, attempt_id: int, caller: User) -> ExamAttempt:
        attempt = await self._get_attempt(attempt_id)
        if not caller.is_staff and attempt.student_id != caller.id:
            raise Forbidden("Not authorized")
        return attempt

    async def list_exam_attempts(self, exam_id: int, caller: User) -> List[ExamAttempt]:
        exam = await self._get_exam(exam_id)
        _ensure_exam_owner(exam, caller)
        result = await self.db.execute(
            select(ExamAttempt)
            .filter(ExamAttempt.exam_id == exam_id)
            .order_by(ExamAttempt.started_at.desc(), ExamAttempt.id.desc())
        )
        return list(result.scalars().all())

    async def list_student_attempts(self, student_id: int) -> List[ExamAttempt]:
        result = await self.db.execute(
            select(ExamAttempt)
            .filter(ExamAttempt.student_id == student_id)
            .order_by(ExamAttempt.started_at.desc(), ExamAttempt.id.desc())
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Write plumbing

    async def _write(self, attempt_id: int, mutate: Callable[[ExamAttempt], Any]) -> Tuple[ExamAttempt, Any]:
        async with self.locks.lock(attempt_id):
            for retry in range(self.MAX_WRITE_RETRIES):
                attempt = await self._get_attempt(attempt_id, refresh=True)
                try:
                    outcome = mutate(attempt)
                    await self.db.commit()
                    return attempt, outcome
                except ExamServiceError:
                    # Mutators validate before changing anything
                    if self.db.new or self.db.dirty or self.db.deleted:
                        await self.db.rollback()
                    raise
                except (StaleDataError, IntegrityError) as e:
                    await self.db.rollback()
                    self.db.expunge_all()
                    logger.warning(f"Concurrent write on attempt {attempt_id} (retry {retry + 1}): {e}")
            raise InvalidState("Attempt was modified concurrently, please retry")

    @staticmethod
    def _touch(attempt: ExamAttempt, now: datetime) -> None:
        attempt.last_activity_at = now
        # Always emit the UPDATE so the version check runs
        flag_modified(attempt, "last_activity_at")

    def _log_activity(self, attempt: ExamAttempt, event_type: str, data: Optional[dict], now: datetime) -> None:
        self.db.add(ActivityLog(
            attempt_id=attempt.id,
            student_id=attempt.student_id,
            exam_id=attempt.exam_id,
            event_type=event_type,
            event_data=data or {},
            timestamp=now,
        ))

    # ------------------------------------------------------------------
    # Lifecycle

    async def start_attempt(
        self, exam_id: int, student: User, now: Optional[datetime] = None
    ) -> Tuple[ExamAttempt, Exam, bool]:
        """Start or resume an attempt. Returns ``(attempt, exam, created)``."""
        now = to_naive_utc(now) or utc_now()

        async with self.locks.lock(("start", exam_id, student.id)):
            exam = await self._get_exam(exam_id)
            if not exam.is_published:
                raise InvalidState("Exam is not published")
            if exam.start_time and now < exam.start_time:
                raise InvalidState("Exam has not started yet")
            if exam.end_time and now > exam.end_time:
                raise InvalidState("Exam has ended")

            if not exam.allow_multiple_attempts:
                result = await self.db.execute(
                    select(ExamAttempt)
                    .filter(
                        ExamAttempt.exam_id == exam.id,
                        ExamAttempt.student_id == student.id,
                        ExamAttempt.status != AttemptStatus.CANCELLED,
                    )
                    .order_by(ExamAttempt.started_at.desc(), ExamAttempt.id.desc())
                )
                existing = result.scalars().first()
                if existing:
                    if existing.status == AttemptStatus.IN_PROGRESS:
                        logger.info(f"Resuming attempt {existing.id} for student {student.id}")
                        return existing, exam, False
                    raise Conflict("You have already attempted this exam")

            attempt = ExamAttempt(
                exam=exam,
                student=student,
                status=AttemptStatus.IN_PROGRESS,
                started_at=now,
                last_activity_at=now,
                total_marks=exam.total_marks,
                score=0,
                percentage=0,
                passed=False,
                tab_switches=0,
                flagged=False,
                answers=[],
                violations=[],
                webcam_snapshots=[],
            )
            self.db.add(attempt)
            try:
                await self.db.flush()
                self._log_activity(attempt, "exam_start", {}, now)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info(f"Attempt {attempt.id} started: exam {exam.id}, student {student.id}")
        if self.notifier:
            self.notifier.exam_started(attempt, exam, student)
        return attempt, exam, True

    async def record_answer(
        self,
        attempt_id: int,
        caller: User,
        question_id: int,
        value: Any,
        time_spent: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ExamAttempt:
        who = Identity.of(caller)
        now = to_naive_utc(now) or utc_now()

        def mutate(attempt: ExamAttempt):
            _ensure_owner(attempt, who)
            _ensure_active(attempt, "Exam already submitted")
            if attempt.exam is not None and attempt.exam.get_question(question_id) is None:
                raise NotFound("Question not found")

            existing = next((a for a in attempt.answers if a.question_id == question_id), None)
            if existing is not None:
                existing.answer = value
                if time_spent is not None:
                    existing.time_spent = time_spent
            else:
                sequence = max((a.sequence for a in attempt.answers), default=0) + 1
                attempt.answers.append(Answer(
                    question_id=question_id,
                    answer=value,
                    time_spent=time_spent,
                    sequence=sequence,
                    marks_awarded=0,
                ))
            self._touch(attempt, now)
            self._log_activity(attempt, "answer_saved", {"question_id": question_id}, now)

        attempt, _ = await self._write(attempt_id, mutate)
        return attempt

    async def record_violation(
        self,
        attempt_id: int,
        reporter: Optional[User],
        violation_type: str,
        description: Optional[str] = None,
        severity: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        if violation_type not in ViolationType.ALL:
            raise ValidationError(f"Unknown violation type: {violation_type}")
        severity = severity or Severity.MEDIUM
        if severity not in Severity.ALL:
            raise ValidationError(f"Unknown severity: {severity}")
        who = Identity.of(reporter) if reporter is not None else None
        now = to_naive_utc(now) or utc_now()

        def mutate(attempt: ExamAttempt):
            _ensure_active(attempt, "Exam not in progress")
            violation = Violation(
                violation_type=violation_type,
                description=description,
                severity=severity,
                timestamp=now,
            )
            ledger = ViolationLedger(attempt)
            ledger.append(violation)

            limit = effective_tab_switch_limit(attempt.exam)
            if apply_flag(attempt, violation_flag_reason(ledger.count(), limit)):
                logger.warning(f"Attempt {attempt.id} flagged: {attempt.flag_reason}")
            self._touch(attempt, now)
            return violation

        attempt, violation = await self._write(attempt_id, mutate)

        if self.notifier:
            self.notifier.violation_alert(attempt, violation, who)

        return {
            "message": "Violation logged",
            "total_violations": len(attempt.violations),
            "tab_switches": attempt.tab_switches,
            "flagged": attempt.flagged,
        }

    async def submit_attempt(
        self,
        attempt_id: int,
        caller: User,
        auto: bool = False,
        now: Optional[datetime] = None,
    ) -> dict:
        who = Identity.of(caller)
        now = to_naive_utc(now) or utc_now()

        def mutate(attempt: ExamAttempt):
            _ensure_owner(attempt, who)
            _ensure_active(attempt, "Already submitted")
            exam = attempt.exam
            if exam is None:
                raise NotFound("Exam not found")

            result = grade_answers(attempt.answers, exam.questions)
            for ans in attempt.answers:
                graded = result.for_question(ans.question_id)
                ans.is_correct = graded.is_correct if graded else None
                ans.marks_awarded = graded.marks_awarded if graded else 0

            total_marks = attempt.total_marks if attempt.total_marks is not None else exam.total_marks
            attempt.score = result.score
            attempt.percentage = compute_percentage(result.score, total_marks)
            attempt.passed = is_passed(result.score, exam.passing_marks)
            attempt.submitted_at = now
            attempt.time_spent = round((now - attempt.started_at).total_seconds()) if attempt.started_at else 0
            attempt.status = AttemptStatus.AUTO_SUBMITTED if auto else AttemptStatus.SUBMITTED

            ledger = ViolationLedger(attempt)
            limit = effective_tab_switch_limit(exam)
            if apply_flag(attempt, submit_flag_reason(ledger.count(), attempt.tab_switches or 0, limit)):
                logger.warning(f"Attempt {attempt.id} flagged at submission: {attempt.flag_reason}")

            self._touch(attempt, now)
            self._log_activity(
                attempt, "exam_submitted", {"score": attempt.score, "percentage": attempt.percentage}, now
            )
            return total_marks

        attempt, total_marks = await self._write(attempt_id, mutate)
        logger.info(
            f"Attempt {attempt.id} {attempt.status}: score {attempt.score}/{total_marks} "
            f"({attempt.percentage}%), flagged={attempt.flagged}"
        )

        if self.notifier:
            self.notifier.exam_submitted(attempt, attempt.exam, attempt.student)

        return {
            "message": "Exam submitted and graded",
            "score": attempt.score,
            "total_marks": total_marks,
            "percentage": attempt.percentage,
            "passed": attempt.passed,
            "flagged": attempt.flagged,
        }

    async def cancel_attempt(self, attempt_id: int, caller: User, now: Optional[datetime] = None) -> ExamAttempt:
        """Administrative cancellation; frees the student to start again."""
        who = Identity.of(caller)
        now = to_naive_utc(now) or utc_now()

        def mutate(attempt: ExamAttempt):
            if attempt.exam is not None:
                _ensure_exam_owner(attempt.exam, who)
            _ensure_active(attempt, "Only an attempt in progress can be cancelled")
            attempt.status = AttemptStatus.CANCELLED
            self._touch(attempt, now)
            self._log_activity(attempt, "exam_cancelled", {"by": who.id}, now)

        attempt, _ = await self._write(attempt_id, mutate)
        logger.info(f"Attempt {attempt.id} cancelled by user {who.id}")
        return attempt

    # ------------------------------------------------------------------
    # Snapshots and activity

    async def save_snapshot(
        self,
        attempt_id: int,
        image_data: Optional[str] = None,
        content: Optional[bytes] = None,
        filename: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Store a webcam snapshot and attach its URL; empty input stores nothing and returns ''."""
        now = to_naive_utc(now) or utc_now()
        attempt = await self._get_attempt(attempt_id)

        if content:
            url = await self.snapshot_store.save_bytes(content, filename or f"{attempt.id}.png")
        elif image_data:
            url = await self.snapshot_store.save_base64(image_data, attempt.id)
        else:
            return ""

        def mutate(attempt: ExamAttempt):
            attempt.webcam_snapshots.append(WebcamSnapshot(url=url, timestamp=now))
            self._touch(attempt, now)

        await self._write(attempt_id, mutate)
        return url

    async def log_activities(self, attempt_id: int, caller: User, activities: List[dict]) -> int:
        attempt = await self._get_attempt(attempt_id)
        if not caller.is_staff:
            _ensure_owner(attempt, caller)
        now = utc_now()
        for activity in activities:
            self._log_activity(
                attempt,
                str(activity.get("type") or "unknown"),
                activity.get("data"),
                to_naive_utc(activity.get("timestamp")) or now,
            )
        await self.db.commit()
        return len(activities)

    async def get_activity_log(self, attempt_id: int, caller: User) -> Tuple[ExamAttempt, List[ActivityLog]]:
        attempt = await self._get_attempt(attempt_id)
        if attempt.exam is not None:
            _ensure_exam_owner(attempt.exam, caller)
        result = await self.db.execute(
            select(ActivityLog)
            .filter(ActivityLog.attempt_id == attempt_id)
            .order_by(ActivityLog.timestamp, ActivityLog.id)
        )
        return attempt, list(result.scalars().all())


def _ensure_owner(attempt: ExamAttempt, caller) -> None:
    if attempt.student_id != caller.id:
        raise Forbidden("Not authorized")


def _ensure_active(attempt: ExamAttempt, message: str) -> None:
    if attempt.status != AttemptStatus.IN_PROGRESS:
        raise InvalidState(message)


def _ensure_exam_owner(exam: Exam, caller) -> None:
    if not caller.is_staff:
        raise Forbidden("Access denied. Insufficient role.")
    if caller.role != UserRole.ADMIN and exam.instructor_id != caller.id:
        raise Forbidden("Not authorized")
