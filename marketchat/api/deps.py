from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from marketchat.core.config import Settings, get_settings
from marketchat.core.db import get_db_session
from marketchat.core.security import decode_access_token
from marketchat.domain.auth import AuthContext
from marketchat.services.chat_service import ChatService

bearer_scheme = HTTPBearer(auto_error=False)


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> AuthContext:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized.")

    try:
        claims = decode_access_token(credentials.credentials, settings.auth_secret)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized."
        ) from exc

    return AuthContext(user_id=claims.user_id, role=claims.role)


async def get_chat_service(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> ChatService:
    realtime = getattr(request.app.state, "realtime_hub", None)
    return ChatService(session=session, realtime=realtime, settings=settings)
