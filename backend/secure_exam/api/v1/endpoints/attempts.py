from fastapi import APIRouter, Depends, File, UploadFile
from typing import List, Optional

from ....api import deps
from ....models.attempt import AttemptStatus
from ....models.user import User
from ....schemas.attempt import (
    AnswerRequest,
    Attempt,
    AttemptDetail,
    MyAttempt,
    SnapshotRequest,
    SnapshotResult,
    StudentAttemptDetail,
    SubmitRequest,
    SubmitResult,
    ViolationCreate,
    ViolationResult,
)
from ....services.attempt_service import AttemptService

router = APIRouter()


@router.post("/attempts/{attempt_id}/answer")
async def save_answer(
    attempt_id: int,
    answer: AnswerRequest,
    current_user: User = Depends(deps.get_current_user),
    attempt_service: AttemptService = Depends(deps.get_attempt_service),
):
    await attempt_service.record_answer(
        attempt_id, current_user, answer.question_id, answer.answer, time_spent=answer.time_spent
    )
    return {"message": "Answer saved"}


@router.post("/attempts/{attempt_id}/violation", response_model=ViolationResult)
async def log_violation(
    attempt_id: int,
    violation: ViolationCreate,
    current_user: User = Depends(deps.get_current_user),
    attempt_service: AttemptService = Depends(deps.get_attempt_service),
):
    return await attempt_service.record_violation(
        attempt_id,
        current_user,
        violation.type,
        description=violation.description,
        severity=violation.severity,
    )


@router.post("/attempts/{attempt_id}/submit", response_model=SubmitResult)
async def submit_attempt(
    attempt_id: int,
    submit: Optional[SubmitRequest] = None,
    current_user: User = Depends(deps.get_current_user),
    attempt_service: AttemptService = Depends(deps.get_attempt_service),
):
    auto = submit.auto_submit if submit is not None else False
    return await attempt_service.submit_attempt(attempt_id, current_user, auto=auto)


@router.post("/attempts/{attempt_id}/cancel", response_model=Attempt)
async def cancel_attempt(
    attempt_id: int,
    current_user: User = Depends(deps.get_current_staff),
    attempt_service: AttemptService = Depends(deps.get_attempt_service),
):
    return await attempt_service.cancel_attempt(attempt_id, current_user)


@router.post("/attempts/{attempt_id}/snapshot", response_model=SnapshotResult)
async def save_snapshot(
    attempt_id: int,
    snapshot: SnapshotRequest,
    current_user: User = Depends(deps.get_current_user),
    attempt_service: AttemptService = Depends(deps.get_attempt_service),
):
    url = await attempt_service.save_snapshot(attempt_id, image_data=snapshot.image_data)
    return {"message": "Snapshot saved", "url": url}


@router.post("/attempts/{attempt_id}/snapshot/upload", response_model=SnapshotResult)
async def upload_snapshot(
    attempt_id: int,
    snapshot: UploadFile = File(...),
    current_user: User = Depends(deps.get_current_user),
    attempt_service: AttemptService = Depends(deps.get_attempt_service),
):
    content = await snapshot.read()
    url = await attempt_service.save_snapshot(attempt_id, content=content, filename=snapshot.filename)
    return {"message": "Snapshot saved", "url": url}


@router.get("/attempts/{attempt_id}")
async def get_attempt(
    attempt_id: int,
    current_user: User = Depends(deps.get_current_user),
    attempt_service: AttemptService = Depends(deps.get_attempt_service),
):
    """Staff always see answer keys; students only once the attempt is finished."""
    attempt = await attempt_service.get_attempt(attempt_id, current_user)
    if current_user.is_staff or attempt.status in AttemptStatus.COMPLETED:
        return AttemptDetail.model_validate(attempt)
    return StudentAttemptDetail.model_validate(attempt)


@router.get("/my-attempts", response_model=List[MyAttempt])
async def get_my_attempts(
    current_user: User = Depends(deps.get_current_user),
    attempt_service: AttemptService = Depends(deps.get_attempt_service),
):
    return await attempt_service.list_student_attempts(current_user.id)
