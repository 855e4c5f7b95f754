from fastapi import APIRouter, Depends, Query, Response, status
from typing import List

from ....api import deps
from ....core.config import settings
from ....models.user import User, UserRole
from ....schemas.attempt import Attempt, ExamAttemptListItem, StartAttemptResponse
from ....schemas.exam import Exam, ExamCreate, ExamList, ExamSummary, ExamUpdate, SanitizedExam
from ....services.attempt_service import AttemptService
from ....services.exam_service import ExamService

router = APIRouter()


@router.post("", response_model=Exam, status_code=status.HTTP_201_CREATED)
async def create_exam(
    exam_data: ExamCreate,
    current_user: User = Depends(deps.get_current_staff),
    exam_service: ExamService = Depends(deps.get_exam_service),
):
    return await exam_service.create_exam(exam_data, current_user)


@router.get("", response_model=ExamList)
async def list_exams(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(deps.get_current_user),
    exam_service: ExamService = Depends(deps.get_exam_service),
):
    exams, total, pages = await exam_service.list_exams(current_user, page=page, limit=limit)
    return ExamList(
        exams=[ExamSummary.model_validate(exam) for exam in exams],
        total=total,
        page=page,
        pages=pages,
    )


@router.get("/{exam_id}")
async def get_exam(
    exam_id: int,
    current_user: User = Depends(deps.get_current_user),
    exam_service: ExamService = Depends(deps.get_exam_service),
):
    """Students get the exam without answer keys or explanations."""
    exam = await exam_service.get_exam(exam_id)
    if current_user.role == UserRole.STUDENT:
        return SanitizedExam.model_validate(exam)
    return Exam.model_validate(exam)


@router.put("/{exam_id}", response_model=Exam)
async def update_exam(
    exam_id: int,
    exam_data: ExamUpdate,
    current_user: User = Depends(deps.get_current_staff),
    exam_service: ExamService = Depends(deps.get_exam_service),
):
    return await exam_service.update_exam(exam_id, exam_data, current_user)


@router.delete("/{exam_id}")
async def delete_exam(
    exam_id: int,
    current_user: User = Depends(deps.get_current_staff),
    exam_service: ExamService = Depends(deps.get_exam_service),
):
    await exam_service.delete_exam(exam_id, current_user)
    return {"message": "Exam deleted"}


@router.post("/{exam_id}/start", response_model=StartAttemptResponse, status_code=status.HTTP_201_CREATED)
async def start_exam(
    exam_id: int,
    response: Response,
    current_user: User = Depends(deps.get_current_student),
    attempt_service: AttemptService = Depends(deps.get_attempt_service),
):
    attempt, exam, created = await attempt_service.start_attempt(exam_id, current_user)
    if not created:
        response.status_code = status.HTTP_200_OK
    return StartAttemptResponse(
        attempt=Attempt.model_validate(attempt),
        exam=SanitizedExam.model_validate(exam),
        resumed=not created,
        snapshot_interval=settings.snapshot_interval_seconds,
    )


@router.get("/{exam_id}/attempts", response_model=List[ExamAttemptListItem])
async def list_exam_attempts(
    exam_id: int,
    current_user: User = Depends(deps.get_current_staff),
    attempt_service: AttemptService = Depends(deps.get_attempt_service),
):
    return await attempt_service.list_exam_attempts(exam_id, current_user)
