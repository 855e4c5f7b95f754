import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import hours_from_now, make_exam
from secure_exam.core.exceptions import Conflict, Forbidden, InvalidState, NotFound, ValidationError
from secure_exam.models import ActivityLog, AttemptStatus, Question, QuestionType
from secure_exam.services.attempt_service import AttemptLocks, AttemptService
from secure_exam.services.live_notifications import INSTRUCTORS_GROUP


def question_ids(exam):
    return [q.id for q in exam.questions]


async def test_start_creates_attempt_with_snapshot(service, exam, student):
    attempt, returned_exam, created = await service.start_attempt(exam.id, student)

    assert created is True
    assert returned_exam.id == exam.id
    assert attempt.status == AttemptStatus.IN_PROGRESS
    assert attempt.total_marks == 5
    assert attempt.answers == []
    assert attempt.violations == []
    assert attempt.started_at is not None


async def test_start_resumes_in_progress_attempt(service, exam, student):
    first, _, _ = await service.start_attempt(exam.id, student)
    second, _, created = await service.start_attempt(exam.id, student)

    assert created is False
    assert second.id == first.id


async def test_start_after_submission_conflicts(service, exam, student):
    attempt, _, _ = await service.start_attempt(exam.id, student)
    await service.submit_attempt(attempt.id, student)

    with pytest.raises(Conflict):
        await service.start_attempt(exam.id, student)


async def test_start_allows_retake_when_enabled(db, service, instructor, student):
    exam = await make_exam(db, instructor, allow_multiple_attempts=True)
    first, _, _ = await service.start_attempt(exam.id, student)
    await service.submit_attempt(first.id, student)

    second, _, created = await service.start_attempt(exam.id, student)
    assert created is True
    assert second.id != first.id


async def test_start_rejects_missing_unpublished_and_out_of_window(db, service, instructor, student):
    with pytest.raises(NotFound):
        await service.start_attempt(9999, student)

    draft = await make_exam(db, instructor, is_published=False)
    with pytest.raises(InvalidState, match="not published"):
        await service.start_attempt(draft.id, student)

    future = await make_exam(db, instructor, start_time=hours_from_now(1))
    with pytest.raises(InvalidState, match="not started"):
        await service.start_attempt(future.id, student)

    past = await make_exam(db, instructor, end_time=hours_from_now(-1))
    with pytest.raises(InvalidState, match="ended"):
        await service.start_attempt(past.id, student)


async def test_start_notifies_instructors(service, registry, exam, student):
    subscriber = registry.connect()
    registry.register(subscriber, 1, "instructor")

    attempt, _, _ = await service.start_attempt(exam.id, student)

    message = subscriber.queue.get_nowait()
    assert message["event"] == "exam-started"
    assert message["data"]["attempt_id"] == attempt.id
    assert message["data"]["student_name"] == "Alice Student"


async def test_record_answer_upserts_by_question(service, exam, student):
    q1, q2 = question_ids(exam)
    attempt, _, _ = await service.start_attempt(exam.id, student)

    await service.record_answer(attempt.id, student, q1, "A")
    await service.record_answer(attempt.id, student, q2, "True")
    attempt = await service.record_answer(attempt.id, student, q1, "B", time_spent=12)

    assert [(a.question_id, a.answer) for a in attempt.answers] == [(q1, "B"), (q2, "True")]
    assert attempt.answers[0].time_spent == 12


async def test_record_answer_rejects_other_students(service, exam, student, other_student):
    attempt, _, _ = await service.start_attempt(exam.id, student)

    with pytest.raises(Forbidden):
        await service.record_answer(attempt.id, other_student, question_ids(exam)[0], "B")


async def test_record_answer_rejects_unknown_question_and_attempt(service, exam, student):
    attempt, _, _ = await service.start_attempt(exam.id, student)

    with pytest.raises(NotFound):
        await service.record_answer(attempt.id, student, 12345, "B")
    with pytest.raises(NotFound):
        await service.record_answer(9999, student, question_ids(exam)[0], "B")


async def test_record_answer_after_submit_is_invalid(service, exam, student):
    attempt, _, _ = await service.start_attempt(exam.id, student)
    await service.submit_attempt(attempt.id, student)

    with pytest.raises(InvalidState, match="already submitted"):
        await service.record_answer(attempt.id, student, question_ids(exam)[0], "B")


async def test_submit_grades_example_exam(service, exam, student):
    q1, q2 = question_ids(exam)
    attempt, _, _ = await service.start_attempt(exam.id, student)
    await service.record_answer(attempt.id, student, q1, "b")
    await service.record_answer(attempt.id, student, q2, "False")

    summary = await service.submit_attempt(attempt.id, student)

    assert summary == {
        "message": "Exam submitted and graded",
        "score": 2,
        "total_marks": 5,
        "percentage": 40,
        "passed": False,
        "flagged": False,
    }
    attempt = await service.get_attempt(attempt.id, student)
    assert attempt.status == AttemptStatus.SUBMITTED
    assert attempt.submitted_at is not None
    assert attempt.time_spent >= 0
    assert [(a.is_correct, a.marks_awarded) for a in attempt.answers] == [(True, 2), (False, 0)]


async def test_submit_twice_fails_without_regrading(service, exam, student):
    q1, _ = question_ids(exam)
    attempt, _, _ = await service.start_attempt(exam.id, student)
    await service.record_answer(attempt.id, student, q1, "B")
    first = await service.submit_attempt(attempt.id, student)

    with pytest.raises(InvalidState):
        await service.submit_attempt(attempt.id, student, auto=True)

    attempt = await service.get_attempt(attempt.id, student)
    assert attempt.status == AttemptStatus.SUBMITTED
    assert attempt.score == first["score"]
    assert attempt.percentage == first["percentage"]


async def test_submit_is_independent_of_answer_order(db, service, instructor, student, other_student):
    exam = await make_exam(db, instructor, allow_multiple_attempts=True)
    q1, q2 = question_ids(exam)

    one, _, _ = await service.start_attempt(exam.id, student)
    await service.record_answer(one.id, student, q1, "B")
    await service.record_answer(one.id, student, q2, "True")

    two, _, _ = await service.start_attempt(exam.id, other_student)
    await service.record_answer(two.id, other_student, q2, "False")
    await service.record_answer(two.id, other_student, q1, "A")
    await service.record_answer(two.id, other_student, q2, "True")
    await service.record_answer(two.id, other_student, q1, "B")

    assert await service.submit_attempt(one.id, student) == await service.submit_attempt(two.id, other_student)


async def test_auto_submit_status(service, exam, student):
    attempt, _, _ = await service.start_attempt(exam.id, student)
    await service.submit_attempt(attempt.id, student, auto=True)

    attempt = await service.get_attempt(attempt.id, student)
    assert attempt.status == AttemptStatus.AUTO_SUBMITTED


async def test_submit_by_other_student_is_forbidden(service, exam, student, other_student):
    attempt, _, _ = await service.start_attempt(exam.id, student)

    with pytest.raises(Forbidden):
        await service.submit_attempt(attempt.id, other_student)


async def test_submit_uses_total_marks_snapshot(db, service, exam, student):
    q1, q2 = question_ids(exam)
    attempt, _, _ = await service.start_attempt(exam.id, student)
    await service.record_answer(attempt.id, student, q1, "B")
    await service.record_answer(attempt.id, student, q2, "True")

    exam.total_marks = 10
    await db.commit()

    summary = await service.submit_attempt(attempt.id, student)
    assert summary["total_marks"] == 5
    assert summary["percentage"] == 100


async def test_zero_total_marks_gives_zero_percentage(db, service, instructor, student):
    exam = await make_exam(
        db,
        instructor,
        total_marks=0,
        passing_marks=0,
        questions=[Question(
            position=0,
            question_type=QuestionType.TRUE_FALSE,
            question_text="Free point",
            correct_answer="True",
            marks=0,
        )],
    )
    attempt, _, _ = await service.start_attempt(exam.id, student)
    await service.record_answer(attempt.id, student, exam.questions[0].id, "True")

    summary = await service.submit_attempt(attempt.id, student)
    assert summary["percentage"] == 0
    assert summary["passed"] is True


async def test_answers_for_removed_questions_score_nothing(db, service, exam, student):
    q1, q2 = question_ids(exam)
    attempt, _, _ = await service.start_attempt(exam.id, student)
    await service.record_answer(attempt.id, student, q1, "B")
    await service.record_answer(attempt.id, student, q2, "True")

    exam.questions = [q for q in exam.questions if q.id == q2]
    await db.commit()

    summary = await service.submit_attempt(attempt.id, student)
    assert summary["score"] == 3
    attempt = await service.get_attempt(attempt.id, student)
    removed = next(a for a in attempt.answers if a.question_id == q1)
    assert removed.is_correct is None
    assert removed.marks_awarded == 0


async def test_six_tab_switches_flag_attempt(service, exam, student):
    attempt, _, _ = await service.start_attempt(exam.id, student)

    for _ in range(5):
        result = await service.record_violation(attempt.id, student, "tab_switch")
        assert result["flagged"] is False

    result = await service.record_violation(attempt.id, student, "tab_switch", description="left the page")
    assert result == {"message": "Violation logged", "total_violations": 6, "tab_switches": 6, "flagged": True}

    result = await service.record_violation(attempt.id, student, "right_click", severity="low")
    assert result["flagged"] is True
    assert result["tab_switches"] == 6

    attempt = await service.get_attempt(attempt.id, student)
    assert attempt.flag_reason == "Auto-flagged: 7 violations"
    assert [v.violation_type for v in attempt.violations][-1] == "right_click"


async def test_submit_flag_check_fires_at_limit(service, exam, student):
    attempt, _, _ = await service.start_attempt(exam.id, student)
    for _ in range(3):
        await service.record_violation(attempt.id, student, "tab_switch")

    summary = await service.submit_attempt(attempt.id, student)

    assert summary["flagged"] is True
    attempt = await service.get_attempt(attempt.id, student)
    assert attempt.flag_reason == "Exceeded violation limit: 3 violations, 3 tab switches"


async def test_submit_flag_uses_default_limit(db, service, instructor, student):
    exam = await make_exam(db, instructor, tab_switch_limit=None)
    attempt, _, _ = await service.start_attempt(exam.id, student)
    for _ in range(2):
        await service.record_violation(attempt.id, student, "copy_paste")

    summary = await service.submit_attempt(attempt.id, student)
    assert summary["flagged"] is False


async def test_flag_survives_submission_below_limit(db, service, instructor, student):
    exam = await make_exam(db, instructor, tab_switch_limit=1)
    attempt, _, _ = await service.start_attempt(exam.id, student)
    await service.record_violation(attempt.id, student, "window_blur")
    await service.record_violation(attempt.id, student, "resize")

    summary = await service.submit_attempt(attempt.id, student)
    assert summary["flagged"] is True
    attempt = await service.get_attempt(attempt.id, student)
    assert attempt.flag_reason == "Exceeded violation limit: 2 violations, 0 tab switches"


async def test_violation_after_submit_is_rejected(service, exam, student):
    attempt, _, _ = await service.start_attempt(exam.id, student)
    await service.submit_attempt(attempt.id, student)

    with pytest.raises(InvalidState, match="not in progress"):
        await service.record_violation(attempt.id, student, "tab_switch")

    attempt = await service.get_attempt(attempt.id, student)
    assert attempt.violations == []


async def test_violation_validation(service, exam, student):
    attempt, _, _ = await service.start_attempt(exam.id, student)

    with pytest.raises(ValidationError):
        await service.record_violation(attempt.id, student, "telepathy")
    with pytest.raises(ValidationError):
        await service.record_violation(attempt.id, student, "tab_switch", severity="apocalyptic")
    with pytest.raises(NotFound):
        await service.record_violation(9999, student, "tab_switch")


async def test_violation_defaults_to_medium_and_alerts(service, registry, exam, student):
    subscriber = registry.connect()
    registry.register(subscriber, 1, "admin")
    attempt, _, _ = await service.start_attempt(exam.id, student)
    subscriber.queue.get_nowait()

    await service.record_violation(attempt.id, student, "devtools")

    message = subscriber.queue.get_nowait()
    assert message["event"] == "violation-alert"
    assert message["data"]["violation"]["type"] == "devtools"
    assert message["data"]["violation"]["severity"] == "medium"
    assert message["data"]["total_violations"] == 1


async def test_submit_notifies_instructors(service, registry, exam, student):
    subscriber = registry.connect()
    registry.register(subscriber, 1, "instructor")
    attempt, _, _ = await service.start_attempt(exam.id, student)
    await service.submit_attempt(attempt.id, student)

    events = [subscriber.queue.get_nowait()["event"] for _ in range(2)]
    assert events == ["exam-started", "exam-submitted"]
    assert registry.group_size(INSTRUCTORS_GROUP) == 1


async def test_cancel_frees_student_to_restart(service, exam, student, instructor):
    attempt, _, _ = await service.start_attempt(exam.id, student)

    cancelled = await service.cancel_attempt(attempt.id, instructor)
    assert cancelled.status == AttemptStatus.CANCELLED

    with pytest.raises(InvalidState):
        await service.record_answer(attempt.id, student, question_ids(exam)[0], "B")

    restarted, _, created = await service.start_attempt(exam.id, student)
    assert created is True
    assert restarted.id != attempt.id


async def test_cancel_requires_exam_owner(service, exam, student, other_instructor, admin):
    attempt, _, _ = await service.start_attempt(exam.id, student)

    with pytest.raises(Forbidden):
        await service.cancel_attempt(attempt.id, student)
    with pytest.raises(Forbidden):
        await service.cancel_attempt(attempt.id, other_instructor)

    cancelled = await service.cancel_attempt(attempt.id, admin)
    assert cancelled.status == AttemptStatus.CANCELLED


async def test_get_attempt_access(service, exam, student, other_student, other_instructor):
    attempt, _, _ = await service.start_attempt(exam.id, student)

    with pytest.raises(Forbidden):
        await service.get_attempt(attempt.id, other_student)
    assert (await service.get_attempt(attempt.id, other_instructor)).id == attempt.id
    with pytest.raises(NotFound):
        await service.get_attempt(9999, student)


async def test_activity_log_records_lifecycle(db, service, exam, student, instructor):
    q1, _ = question_ids(exam)
    attempt, _, _ = await service.start_attempt(exam.id, student)
    await service.record_answer(attempt.id, student, q1, "B")
    await service.log_activities(attempt.id, student, [{"type": "focus_change", "data": {"focused": False}}])
    await service.submit_attempt(attempt.id, student)

    _, logs = await service.get_activity_log(attempt.id, instructor)
    assert [log.event_type for log in logs] == ["exam_start", "answer_saved", "focus_change", "exam_submitted"]
    assert logs[1].event_data == {"question_id": q1}

    with pytest.raises(Forbidden):
        await service.get_activity_log(attempt.id, student)


async def test_snapshot_storage(service, exam, student, upload_dir):
    attempt, _, _ = await service.start_attempt(exam.id, student)

    assert await service.save_snapshot(attempt.id) == ""

    url = await service.save_snapshot(attempt.id, image_data="data:image/png;base64,aGVsbG8=")
    assert url.startswith("/uploads/snapshots/")
    stored = upload_dir / "snapshots" / url.rsplit("/", 1)[1]
    assert stored.read_bytes() == b"hello"

    attempt = await service.get_attempt(attempt.id, student)
    assert [s.url for s in attempt.webcam_snapshots] == [url]

    with pytest.raises(ValidationError):
        await service.save_snapshot(attempt.id, image_data="not base64!!")
    with pytest.raises(NotFound):
        await service.save_snapshot(9999, image_data="aGVsbG8=")


async def test_concurrent_submits_single_winner(session_factory, service, exam, student):
    attempt, _, _ = await service.start_attempt(exam.id, student)

    async with session_factory() as db_a, session_factory() as db_b:
        service_a = AttemptService(db_a, locks=AttemptLocks())
        service_b = AttemptService(db_b, locks=AttemptLocks())
        results = await asyncio.gather(
            service_a.submit_attempt(attempt.id, student),
            service_b.submit_attempt(attempt.id, student),
            return_exceptions=True,
        )

    successes = [r for r in results if isinstance(r, dict)]
    failures = [r for r in results if isinstance(r, InvalidState)]
    assert len(successes) == 1
    assert len(failures) == 1

    async with session_factory() as db:
        logs = (await db.execute(
            select(ActivityLog).filter(ActivityLog.attempt_id == attempt.id, ActivityLog.event_type == "exam_submitted")
        )).scalars().all()
    assert len(logs) == 1


async def test_submit_sees_answers_saved_before_it(service, exam, student):
    q1, q2 = question_ids(exam)
    attempt, _, _ = await service.start_attempt(exam.id, student)

    summaries = await asyncio.gather(
        service.record_answer(attempt.id, student, q1, "B"),
        service.record_answer(attempt.id, student, q2, "True"),
        service.submit_attempt(attempt.id, student),
    )
    assert summaries[2]["score"] == 5


async def test_list_attempts(service, exam, student, instructor, other_instructor):
    attempt, _, _ = await service.start_attempt(exam.id, student)

    assert [a.id for a in await service.list_exam_attempts(exam.id, instructor)] == [attempt.id]
    assert [a.id for a in await service.list_student_attempts(student.id)] == [attempt.id]
    with pytest.raises(Forbidden):
        await service.list_exam_attempts(exam.id, other_instructor)
    with pytest.raises(Forbidden):
        await service.list_exam_attempts(exam.id, student)


async def test_time_spent_from_start_to_submit(service, exam, student):
    attempt, _, _ = await service.start_attempt(exam.id, student)
    later = attempt.started_at + timedelta(minutes=12, seconds=30)

    await service.submit_attempt(attempt.id, student, now=later)

    attempt = await service.get_attempt(attempt.id, student)
    assert attempt.time_spent == 750
    assert attempt.submitted_at == later
