from fastapi import APIRouter, Depends

from ....api import deps
from ....models.user import User
from ....schemas.dashboard import InstructorDashboard, StudentDashboard
from ....services.dashboard_service import DashboardService

router = APIRouter()


@router.get("/instructor", response_model=InstructorDashboard)
async def instructor_dashboard(
    current_user: User = Depends(deps.get_current_staff),
    dashboard_service: DashboardService = Depends(deps.get_dashboard_service),
):
    return await dashboard_service.instructor_dashboard(current_user)


@router.get("/student", response_model=StudentDashboard)
async def student_dashboard(
    current_user: User = Depends(deps.get_current_user),
    dashboard_service: DashboardService = Depends(deps.get_dashboard_service),
):
    return await dashboard_service.student_dashboard(current_user)
