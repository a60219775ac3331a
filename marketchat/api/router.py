from fastapi import APIRouter

from marketchat.api.v1.routes import chat, dashboard, health, realtime
from marketchat.schemas.common import ErrorResponse

_error_responses = {
    code: {"model": ErrorResponse} for code in (400, 401, 403, 404, 500, 503)
}

api_router = APIRouter()
api_router.include_router(health.router, prefix="/v1", tags=["health"])
api_router.include_router(
    dashboard.router,
    prefix="/v1/chat/dashboard",
    tags=["dashboard"],
    responses=_error_responses,
)
api_router.include_router(
    chat.router,
    prefix="/v1/chat",
    tags=["chat"],
    responses={**_error_responses, 409: {"model": ErrorResponse}, 410: {"model": ErrorResponse}},
)
api_router.include_router(realtime.router, prefix="/v1/realtime", tags=["realtime"])
