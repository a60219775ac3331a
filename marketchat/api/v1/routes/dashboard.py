from typing import Any
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from marketchat.api.deps import get_auth_context, get_chat_service
from marketchat.api.presenters import (
    to_exchange_response,
    to_list_response,
    to_messages_response,
    to_state_response,
)
from marketchat.domain.auth import AuthContext
from marketchat.domain.enums import ChatSurface
from marketchat.schemas.conversation import (
    AdminTakeoverRequest,
    ClearConversationResponse,
    ConversationListResponse,
    ConversationMessagesResponse,
    ConversationStateResponse,
    DeleteConversationResponse,
    MessageExchangeResponse,
)
from marketchat.services.chat_service import ChatService
from marketchat.services.errors import (
    ChatServiceError,
    ConversationNotFoundError,
    ConversationStoreError,
    InvalidPayloadError,
    NotAuthorizedError,
)

router = APIRouter()


def _dashboard_role(auth: AuthContext) -> str:
    return "admin" if auth.is_admin else "vendor"


def _raise_for_service_error(exc: ChatServiceError) -> None:
    if isinstance(exc, ConversationNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message) from exc
    if isinstance(exc, NotAuthorizedError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.message) from exc
    if isinstance(exc, InvalidPayloadError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    if isinstance(exc, ConversationStoreError):
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.message
        ) from exc
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.message
    ) from exc


@router.get("/conversations", response_model=ConversationListResponse)
async def list_conversations(
    auth: AuthContext = Depends(get_auth_context),
    service: ChatService = Depends(get_chat_service),
) -> ConversationListResponse:
    try:
        views = await service.list_conversations(auth, ChatSurface.DASHBOARD)
    except ChatServiceError as exc:
        _raise_for_service_error(exc)
    return to_list_response(auth, views, _dashboard_role(auth))


@router.get(
    "/conversations/{conversation_id}/messages",
    response_model=ConversationMessagesResponse,
)
async def get_messages(
    conversation_id: UUID,
    limit: str | None = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    service: ChatService = Depends(get_chat_service),
) -> ConversationMessagesResponse:
    try:
        result = await service.get_messages(
            auth, conversation_id, ChatSurface.DASHBOARD, limit=limit
        )
    except ChatServiceError as exc:
        _raise_for_service_error(exc)
    return to_messages_response(auth, result, _dashboard_role(auth))


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageExchangeResponse,
)
async def send_message(
    conversation_id: UUID,
    payload: Any = Body(default=None),
    auth: AuthContext = Depends(get_auth_context),
    service: ChatService = Depends(get_chat_service),
) -> MessageExchangeResponse:
    try:
        result = await service.send_message(
            auth, conversation_id, ChatSurface.DASHBOARD, payload
        )
    except ChatServiceError as exc:
        _raise_for_service_error(exc)
    return to_exchange_response(auth, result, _dashboard_role(auth))


@router.patch("/conversations/{conversation_id}", response_model=ConversationStateResponse)
async def set_admin_takeover(
    conversation_id: UUID,
    payload: AdminTakeoverRequest,
    auth: AuthContext = Depends(get_auth_context),
    service: ChatService = Depends(get_chat_service),
) -> ConversationStateResponse:
    try:
        view = await service.set_admin_takeover(
            auth, conversation_id, payload.admin_takeover_enabled
        )
    except ChatServiceError as exc:
        _raise_for_service_error(exc)
    return to_state_response(auth, view, _dashboard_role(auth))


@router.post(
    "/conversations/{conversation_id}/reopen",
    response_model=ConversationStateResponse,
)
async def reopen_conversation(
    conversation_id: UUID,
    auth: AuthContext = Depends(get_auth_context),
    service: ChatService = Depends(get_chat_service),
) -> ConversationStateResponse:
    try:
        view = await service.reopen_conversation(auth, conversation_id)
    except ChatServiceError as exc:
        _raise_for_service_error(exc)
    return to_state_response(auth, view, _dashboard_role(auth))


@router.delete("/conversations/{conversation_id}", response_model=DeleteConversationResponse)
async def delete_conversation(
    conversation_id: UUID,
    auth: AuthContext = Depends(get_auth_context),
    service: ChatService = Depends(get_chat_service),
) -> DeleteConversationResponse:
    try:
        await service.delete_conversation(auth, conversation_id)
    except ChatServiceError as exc:
        _raise_for_service_error(exc)
    return DeleteConversationResponse(deleted_conversation_id=conversation_id)


@router.delete(
    "/conversations/{conversation_id}/clear",
    response_model=ClearConversationResponse,
)
async def clear_conversation(
    conversation_id: UUID,
    auth: AuthContext = Depends(get_auth_context),
    service: ChatService = Depends(get_chat_service),
) -> ClearConversationResponse:
    try:
        await service.clear_conversation(auth, conversation_id)
    except ChatServiceError as exc:
        _raise_for_service_error(exc)
    return ClearConversationResponse(cleared=True, conversation_id=conversation_id)
