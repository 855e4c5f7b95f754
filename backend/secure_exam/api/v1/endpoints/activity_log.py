from fastapi import APIRouter, Depends

from ....api import deps
from ....models.user import User
from ....schemas.attempt import ActivityCreate, ActivityLog, ActivityLogEntry, StudentSummary
from ....services.attempt_service import AttemptService

router = APIRouter()


@router.post("/{attempt_id}")
async def log_activities(
    attempt_id: int,
    payload: ActivityCreate,
    current_user: User = Depends(deps.get_current_user),
    attempt_service: AttemptService = Depends(deps.get_attempt_service),
):
    logged = await attempt_service.log_activities(
        attempt_id, current_user, [entry.model_dump() for entry in payload.activities]
    )
    return {"message": "Activities logged", "count": logged}


@router.get("/{attempt_id}", response_model=ActivityLog)
async def get_activity_log(
    attempt_id: int,
    current_user: User = Depends(deps.get_current_staff),
    attempt_service: AttemptService = Depends(deps.get_attempt_service),
):
    attempt, entries = await attempt_service.get_activity_log(attempt_id, current_user)
    return ActivityLog(
        attempt_id=attempt.id,
        exam_id=attempt.exam_id,
        student=StudentSummary.model_validate(attempt.student) if attempt.student else None,
        activities=[ActivityLogEntry.model_validate(entry) for entry in entries],
    )
