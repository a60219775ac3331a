import logging
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
    ConversationListResponse,
    ConversationMessagesResponse,
    ConversationStateResponse,
    MessageExchangeResponse,
    StartConversationRequest,
)
from marketchat.services.chat_service import ChatService
from marketchat.services.errors import (
    ChatServiceError,
    ConversationNotFoundError,
    ConversationStoreError,
    ConversationUnavailableError,
    InvalidPayloadError,
    NotAuthorizedError,
    ProductNotFoundError,
    SellerUnavailableError,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _raise_for_service_error(exc: ChatServiceError) -> None:
    if isinstance(exc, (ConversationNotFoundError, ProductNotFoundError)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message) from exc
    if isinstance(exc, NotAuthorizedError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.message) from exc
    if isinstance(exc, SellerUnavailableError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message) from exc
    if isinstance(exc, ConversationUnavailableError):
        raise HTTPException(status_code=status.HTTP_410_GONE, detail=exc.message) from exc
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
        views = await service.list_conversations(auth, ChatSurface.STOREFRONT)
    except ChatServiceError as exc:
        _raise_for_service_error(exc)
    return to_list_response(auth, views, auth.role.value)


@router.post("/conversations", response_model=ConversationMessagesResponse)
async def start_conversation(
    payload: StartConversationRequest,
    auth: AuthContext = Depends(get_auth_context),
    service: ChatService = Depends(get_chat_service),
) -> ConversationMessagesResponse:
    try:
        result = await service.start_conversation(auth, payload.product_id)
    except ChatServiceError as exc:
        _raise_for_service_error(exc)
    return to_messages_response(auth, result, auth.role.value)


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
            auth, conversation_id, ChatSurface.STOREFRONT, limit=limit
        )
    except ChatServiceError as exc:
        _raise_for_service_error(exc)
    return to_messages_response(auth, result, auth.role.value)


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
            auth, conversation_id, ChatSurface.STOREFRONT, payload
        )
    except ChatServiceError as exc:
        _raise_for_service_error(exc)
    return to_exchange_response(auth, result, auth.role.value)


@router.post(
    "/conversations/{conversation_id}/close",
    response_model=ConversationStateResponse,
)
async def close_conversation(
    conversation_id: UUID,
    auth: AuthContext = Depends(get_auth_context),
    service: ChatService = Depends(get_chat_service),
) -> ConversationStateResponse:
    try:
        view = await service.close_conversation(auth, conversation_id)
    except ChatServiceError as exc:
        _raise_for_service_error(exc)
    return to_state_response(auth, view, auth.role.value)


@router.post("/help-center", response_model=ConversationStateResponse)
async def open_help_center(
    auth: AuthContext = Depends(get_auth_context),
    service: ChatService = Depends(get_chat_service),
) -> ConversationStateResponse:
    try:
        view = await service.open_help_center(auth)
    except ChatServiceError as exc:
        _raise_for_service_error(exc)
    logger.info("User %s opened Help Center conversation %s", auth.user_id, view.conversation.id)
    return to_state_response(auth, view, auth.role.value)
