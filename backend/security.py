import base64
import hashlib
import hmac
import json
import time
from typing import Any, Callable

from fastapi import Header, HTTPException

from backend.config import AUTH_TOKEN_TTL_SECONDS, SIGNING_KEY
from backend.errors import AuthenticationFailed

ROLES = {"student", "lecturer"}


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _sign(message: str) -> str:
    digest = hmac.new(
        SIGNING_KEY.encode("utf-8"),
        message.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return _b64url_encode(digest)


def issue_session_token(user_id: int, *, role: str) -> tuple[str, dict[str, Any]]:
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role!r}")
    now = int(time.time())
    payload = {
        "sub": str(int(user_id)),
        "role": role,
        "iat": now,
        "exp": now + AUTH_TOKEN_TTL_SECONDS,
    }
    payload_json = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    payload_b64 = _b64url_encode(payload_json.encode("utf-8"))
    token = f"{payload_b64}.{_sign(payload_b64)}"
    return token, payload


def decode_session_token(token: str) -> dict[str, Any] | None:
    if not token or "." not in token:
        return None

    payload_b64, signature = token.split(".", 1)
    expected = _sign(payload_b64)
    # compare_digest rejects non-ASCII str; headers arrive as latin-1.
    if not signature.isascii() or not hmac.compare_digest(signature, expected):
        return None

    try:
        payload_raw = _b64url_decode(payload_b64).decode("utf-8")
        payload = json.loads(payload_raw)
    except (ValueError, UnicodeDecodeError):
        return None

    if not isinstance(payload, dict):
        return None

    sub = payload.get("sub")
    exp = payload.get("exp")
    if not isinstance(sub, str) or not sub.strip().isdigit():
        return None
    if payload.get("role") not in ROLES:
        return None
    if not isinstance(exp, int):
        return None
    if exp < int(time.time()):
        return None

    return payload


def _bearer_payload(authorization: str | None) -> tuple[dict[str, Any] | None, str]:
    if not authorization:
        return None, "Missing bearer token."

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None, "Invalid authorization scheme."

    payload = decode_session_token(token.strip())
    if not payload:
        return None, "Invalid or expired session token."
    return payload, ""


def require_session(authorization: str | None = Header(default=None)) -> dict[str, Any]:
    payload, problem = _bearer_payload(authorization)
    if not payload:
        raise HTTPException(status_code=401, detail=problem)
    return payload


def require_role(role: str) -> Callable[..., dict[str, Any]]:
    def dependency(authorization: str | None = Header(default=None)) -> dict[str, Any]:
        session = require_session(authorization)
        if session["role"] != role:
            raise HTTPException(status_code=403, detail=f"{role.capitalize()} access required.")
        return session

    return dependency


require_lecturer = require_role("lecturer")
require_student = require_role("student")


def student_identity(authorization: str | None = Header(default=None)) -> int:
    """
    Caller identity for the marking endpoints.

    Failures are raised as `AuthenticationFailed` so they reach the client as
    the same structured result as every other marking rejection.
    """
    payload, problem = _bearer_payload(authorization)
    if not payload:
        raise AuthenticationFailed(problem)
    if payload["role"] != "student":
        raise AuthenticationFailed("Only students can mark attendance.")
    return int(payload["sub"])


def _record_message(record: dict[str, Any]) -> str:
    return "|".join(
        str(record[key])
        for key in ("id", "student_id", "session_id", "timestamp", "signature_url")
    )


def sign_record(record: dict[str, Any]) -> str:
    return _sign(_record_message(record))


def verify_record_signature(record: dict[str, Any]) -> bool:
    signature = record.get("record_signature")
    if not signature:
        return False
    return hmac.compare_digest(str(signature), sign_record(record))
