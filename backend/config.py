import os
import secrets
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

DATA_DIR = Path(os.getenv("CLASSMARK_DATA_DIR", BASE_DIR / "data"))
DB_PATH = Path(os.getenv("CLASSMARK_DB_PATH", DATA_DIR / "classmark.db"))
EVIDENCE_DIR = Path(os.getenv("CLASSMARK_EVIDENCE_DIR", DATA_DIR / "signatures"))
PUBLIC_BASE_URL = os.getenv("CLASSMARK_PUBLIC_BASE_URL", "http://127.0.0.1:8000").strip().rstrip("/")
EVIDENCE_URL_PREFIX = "/" + (os.getenv("CLASSMARK_EVIDENCE_URL_PREFIX", "/evidence").strip().strip("/") or "evidence")
SIGNING_KEY = os.getenv("CLASSMARK_SIGNING_KEY", "").strip() or secrets.token_urlsafe(32)
AUTH_TOKEN_TTL_SECONDS = int(os.getenv("CLASSMARK_AUTH_TOKEN_TTL_SECONDS", "43200"))
LOG_LEVEL = os.getenv("CLASSMARK_LOG_LEVEL", "INFO").strip().upper() or "INFO"


def _parse_bool(value: str | None, fallback: bool) -> bool:
    if value is None:
        return fallback
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return fallback


def _parse_csv(value: str | None, fallback: list[str]) -> list[str]:
    if not value:
        return fallback
    parsed = [item.strip() for item in value.split(",") if item.strip()]
    return parsed or fallback


def _parse_int(value: str | None, fallback: int, *, minimum: int = 0) -> int:
    if not value:
        return fallback
    try:
        return max(minimum, int(value.strip()))
    except ValueError:
        return fallback


def _parse_float(value: str | None, fallback: float, *, minimum: float = 0.0) -> float:
    if not value:
        return fallback
    try:
        return max(minimum, float(value.strip()))
    except ValueError:
        return fallback


CORS_ALLOW_ORIGINS = _parse_csv(
    os.getenv("CLASSMARK_CORS_ALLOW_ORIGINS"),
    ["http://localhost:3000", "http://127.0.0.1:3000"],
)
CORS_ALLOW_METHODS = _parse_csv(
    os.getenv("CLASSMARK_CORS_ALLOW_METHODS"),
    ["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
)
CORS_ALLOW_HEADERS = _parse_csv(
    os.getenv("CLASSMARK_CORS_ALLOW_HEADERS"),
    ["Authorization", "Content-Type", "Accept"],
)
CORS_ALLOW_CREDENTIALS = _parse_bool(os.getenv("CLASSMARK_CORS_ALLOW_CREDENTIALS"), True)

DB_BUSY_TIMEOUT_SECONDS = _parse_float(os.getenv("CLASSMARK_DB_BUSY_TIMEOUT_SECONDS"), 10.0)

# Signature (evidence) gates
INK_THRESHOLD = _parse_int(os.getenv("CLASSMARK_INK_THRESHOLD"), 128)
MIN_INK_PIXELS = _parse_int(os.getenv("CLASSMARK_MIN_INK_PIXELS"), 30)
MIN_INK_RATIO = _parse_float(os.getenv("CLASSMARK_MIN_INK_RATIO"), 0.001)
MAX_EVIDENCE_BYTES = _parse_int(os.getenv("CLASSMARK_MAX_EVIDENCE_BYTES"), 2 * 1024 * 1024, minimum=1)
EVIDENCE_UPLOAD_RETRIES = _parse_int(os.getenv("CLASSMARK_EVIDENCE_UPLOAD_RETRIES"), 3, minimum=1)
EVIDENCE_RETRY_DELAY_SECONDS = _parse_float(os.getenv("CLASSMARK_EVIDENCE_RETRY_DELAY_SECONDS"), 0.2)
