from fastapi import APIRouter

from backend.config import (
    AUTH_TOKEN_TTL_SECONDS,
    EVIDENCE_UPLOAD_RETRIES,
    INK_THRESHOLD,
    MAX_EVIDENCE_BYTES,
    MIN_INK_PIXELS,
    MIN_INK_RATIO,
)

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/config/marking")
def marking_config():
    return {
        "ink_threshold": INK_THRESHOLD,
        "min_ink_pixels": MIN_INK_PIXELS,
        "min_ink_ratio": MIN_INK_RATIO,
        "max_evidence_bytes": MAX_EVIDENCE_BYTES,
        "evidence_upload_retries": EVIDENCE_UPLOAD_RETRIES,
        "auth_token_ttl_seconds": AUTH_TOKEN_TTL_SECONDS,
    }
