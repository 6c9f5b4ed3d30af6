from fastapi import APIRouter
from .endpoints import (
    admin_router,
    auth_router,
    certificate_router,
    community_router,
    course_router,
    cron_router,
    health_router,
    progress_router,
    quiz_attempt_router,
    subscription_router,
    user_router,
    users_router,
    webhook_router,
)

api_router = APIRouter()

api_router.include_router(auth_router.router, prefix="/auth", tags=["Auth"])
api_router.include_router(user_router.router, prefix="/user", tags=["User"])
api_router.include_router(users_router.router, prefix="/users", tags=["User"])
api_router.include_router(course_router.router, prefix="/courses", tags=["Courses"])
api_router.include_router(progress_router.router, prefix="/progress", tags=["Progress"])
api_router.include_router(quiz_attempt_router.router, prefix="/quiz-attempts", tags=["Progress"])
api_router.include_router(community_router.router, prefix="/community", tags=["Community"])
api_router.include_router(certificate_router.router, prefix="/certificates", tags=["Certificates"])
api_router.include_router(subscription_router.router, prefix="/subscriptions", tags=["Subscriptions"])
api_router.include_router(webhook_router.router, prefix="/webhooks", tags=["Webhooks"])
api_router.include_router(cron_router.router, prefix="/cron", tags=["Cron"])
api_router.include_router(health_router.router, prefix="/health", tags=["Health"])
api_router.include_router(admin_router.router, prefix="/admin", tags=["Admin"])
