from __future__ import annotations

import base64
import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from marketchat.domain.enums import UserRole

TOKEN_VERSION = 1


@dataclass(frozen=True, slots=True)
class SessionClaims:
    user_id: str
    role: UserRole
    expires_at: datetime


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(raw: str) -> bytes:
    padded = raw + ("=" * (-len(raw) % 4))
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _sign(payload_segment: str, secret: str) -> bytes:
    return hmac.new(
        secret.encode("utf-8"),
        payload_segment.encode("utf-8"),
        hashlib.sha256,
    ).digest()


def create_access_token(
    *,
    user_id: str,
    role: UserRole,
    secret: str,
    ttl_minutes: int,
    now: datetime | None = None,
) -> tuple[str, datetime]:
    """Issue a signed session token.

    The marketplace auth service issues tokens in deployment; no route here
    does. This exists for operator tooling and tests that need a token the
    chat service will accept.
    """
    issued_at = now or datetime.now(UTC)
    expires_at = issued_at + timedelta(minutes=ttl_minutes)
    payload = {
        "v": TOKEN_VERSION,
        "uid": user_id,
        "role": role.value,
        "exp": int(expires_at.timestamp()),
        "iat": int(issued_at.timestamp()),
    }

    payload_raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode(
        "utf-8"
    )
    payload_segment = _b64url_encode(payload_raw)
    signature = _sign(payload_segment, secret)
    token = f"{payload_segment}.{_b64url_encode(signature)}"
    return token, expires_at


def decode_access_token(token: str, secret: str) -> SessionClaims:
    try:
        payload_segment, signature_segment = token.split(".", 1)
    except ValueError as exc:
        raise ValueError("Malformed token") from exc

    expected_signature = _sign(payload_segment, secret)
    try:
        actual_signature = _b64url_decode(signature_segment)
    except (ValueError, TypeError) as exc:
        raise ValueError("Malformed token signature") from exc

    if not hmac.compare_digest(expected_signature, actual_signature):
        raise ValueError("Invalid token signature")

    try:
        payload = json.loads(_b64url_decode(payload_segment).decode("utf-8"))
    except (ValueError, TypeError, json.JSONDecodeError) as exc:
        raise ValueError("Malformed token payload") from exc

    if not isinstance(payload, dict):
        raise ValueError("Malformed token payload")
    if payload.get("v") != TOKEN_VERSION:
        raise ValueError("Unsupported token version")

    try:
        user_id = str(payload["uid"]).strip()
        role = UserRole(str(payload["role"]))
        expires_at = datetime.fromtimestamp(int(payload["exp"]), UTC)
    except (KeyError, ValueError, TypeError) as exc:
        raise ValueError("Malformed token payload") from exc

    if not user_id:
        raise ValueError("Malformed token payload")
    if expires_at <= datetime.now(UTC):
        raise ValueError("Token expired")

    return SessionClaims(user_id=user_id, role=role, expires_at=expires_at)
