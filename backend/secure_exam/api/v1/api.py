from fastapi import APIRouter

from .endpoints import activity_log, attempts, dashboard, exams, health, live, users

api_router = APIRouter()

api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(exams.router, prefix="/exams", tags=["exams"])
api_router.include_router(attempts.router, tags=["attempts"])
api_router.include_router(dashboard.router, prefix="/dashboard", tags=["dashboard"])
api_router.include_router(activity_log.router, prefix="/activity-log", tags=["activity-log"])
api_router.include_router(live.router, prefix="/live", tags=["live"])
api_router.include_router(health.router, prefix="/health", tags=["health"])
