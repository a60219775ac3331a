import json
import logging
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, WebSocket
from sqlalchemy.exc import SQLAlchemyError
from starlette.websockets import WebSocketDisconnect

from marketchat.core.clock import utcnow
from marketchat.core.config import get_settings
from marketchat.core.db import get_session_factory
from marketchat.core.security import decode_access_token
from marketchat.domain.auth import AuthContext
from marketchat.domain.closure import ConversationClosure
from marketchat.infra.db.repositories import ConversationRepository
from marketchat.infra.realtime.channels import (
    ADMIN_INBOX_CHANNEL,
    conversation_channel,
    user_inbox_channel,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _parse_uuid(raw: Any) -> UUID | None:
    if not isinstance(raw, str):
        return None
    try:
        return UUID(raw)
    except ValueError:
        return None


def _system_event(event: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "event": event,
        "payload": payload,
        "sent_at": datetime.now(UTC).isoformat(),
    }


async def _can_follow(auth: AuthContext, conversation_id: UUID) -> bool:
    async with get_session_factory()() as session:
        conversation = await ConversationRepository(session).get_by_id(conversation_id)
    if conversation is None:
        return False
    if not auth.is_admin and not conversation.has_participant(auth.user_id):
        return False
    closure = ConversationClosure(get_settings().closure_policy())
    state = closure.evaluate(
        conversation, is_admin=auth.is_admin, now=utcnow(), viewer_id=auth.user_id
    )
    return state.can_view


@router.websocket("/ws")
async def realtime_ws(websocket: WebSocket) -> None:
    hub = getattr(websocket.app.state, "realtime_hub", None)
    if hub is None:
        await websocket.close(code=1011, reason="Realtime hub not initialized")
        return

    try:
        get_session_factory()
    except RuntimeError:
        await websocket.close(code=1011, reason="Database session is not initialized")
        return

    access_token = websocket.query_params.get("access_token", "").strip()
    if not access_token:
        await websocket.close(code=1008, reason="Unauthorized.")
        return
    try:
        claims = decode_access_token(access_token, get_settings().auth_secret)
    except ValueError:
        await websocket.close(code=1008, reason="Unauthorized.")
        return
    auth = AuthContext(user_id=claims.user_id, role=claims.role)

    initial_channels = [user_inbox_channel(auth.user_id)]
    if auth.is_admin:
        initial_channels.append(ADMIN_INBOX_CHANNEL)

    requested_conversation_id = _parse_uuid(websocket.query_params.get("conversation_id"))
    if requested_conversation_id is not None:
        try:
            allowed = await _can_follow(auth, requested_conversation_id)
        except SQLAlchemyError:
            logger.warning("Realtime access check failed", exc_info=True)
            await websocket.close(code=1011, reason="Chat service unavailable.")
            return
        if not allowed:
            await websocket.close(code=1008, reason="Forbidden.")
            return
        initial_channels.append(conversation_channel(requested_conversation_id))

    await hub.connect(websocket)
    for channel in initial_channels:
        await hub.subscribe(websocket, channel)

    await websocket.send_json(
        _system_event(
            "system.connected",
            {"role": auth.role.value, "channels": initial_channels},
        )
    )

    try:
        while True:
            raw_message = await websocket.receive_text()
            if raw_message.strip().lower() == "ping":
                await websocket.send_json(_system_event("system.pong", {}))
                continue

            try:
                message = json.loads(raw_message)
            except json.JSONDecodeError:
                await websocket.send_json(
                    _system_event("system.error", {"detail": "Expected JSON payload"})
                )
                continue
            if not isinstance(message, dict):
                await websocket.send_json(
                    _system_event("system.error", {"detail": "Expected JSON object"})
                )
                continue

            action = message.get("action")
            if action == "ping":
                await websocket.send_json(_system_event("system.pong", {}))
                continue

            if action not in ("subscribe_conversation", "unsubscribe_conversation"):
                await websocket.send_json(
                    _system_event("system.error", {"detail": "Unsupported action"})
                )
                continue

            conversation_id = _parse_uuid(message.get("conversation_id"))
            if conversation_id is None:
                await websocket.send_json(
                    _system_event("system.error", {"detail": "Invalid conversation_id"})
                )
                continue

            channel = conversation_channel(conversation_id)
            if action == "unsubscribe_conversation":
                await hub.unsubscribe(websocket, channel)
                await websocket.send_json(
                    _system_event("system.unsubscribed", {"channel": channel})
                )
                continue

            try:
                allowed = await _can_follow(auth, conversation_id)
            except SQLAlchemyError:
                logger.warning("Realtime access check failed", exc_info=True)
                await websocket.send_json(
                    _system_event("system.error", {"detail": "Chat service unavailable."})
                )
                continue
            if not allowed:
                await websocket.send_json(
                    _system_event("system.error", {"detail": "Forbidden."})
                )
                continue

            await hub.subscribe(websocket, channel)
            await websocket.send_json(_system_event("system.subscribed", {"channel": channel}))
    except WebSocketDisconnect:
        return
    finally:
        await hub.disconnect(websocket)
