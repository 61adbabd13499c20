import logging
import re
import secrets
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import TypedDict

from backend.config import (
    EVIDENCE_DIR,
    EVIDENCE_RETRY_DELAY_SECONDS,
    EVIDENCE_UPLOAD_RETRIES,
    EVIDENCE_URL_PREFIX,
    PUBLIC_BASE_URL,
)
from backend.errors import EvidenceMissing, EvidenceUploadFailed
from backend.signature import decode_base64_payload, inspect_signature

logger = logging.getLogger(__name__)

BLOB_NAME_RE = re.compile(r"^student-(?P<student_id>\d+)-(?P<millis>\d+)-[0-9a-f]+\.png$")


class StoredEvidence(TypedDict):
    name: str
    url: str
    captured_at: datetime


def blob_name(student_id: int, captured_at: datetime) -> str:
    millis = int(captured_at.timestamp() * 1000)
    return f"student-{int(student_id)}-{millis}-{secrets.token_hex(4)}.png"


def evidence_url(name: str) -> str:
    return f"{PUBLIC_BASE_URL}{EVIDENCE_URL_PREFIX}/{name}"


def evidence_path(name: str) -> Path | None:
    """Filesystem path for a blob name, or None if the name is not one of ours."""
    if not BLOB_NAME_RE.match(name or ""):
        return None
    return EVIDENCE_DIR / name


def _write_once(path: Path, data: bytes) -> None:
    # "x" refuses to overwrite an existing blob.
    with open(path, "xb") as out_file:
        out_file.write(data)


def store_evidence(student_id: int, png_bytes: bytes, *, captured_at: datetime) -> StoredEvidence:
    last_error: Exception | None = None
    for attempt in range(1, EVIDENCE_UPLOAD_RETRIES + 1):
        name = blob_name(student_id, captured_at)
        try:
            EVIDENCE_DIR.mkdir(parents=True, exist_ok=True)
            _write_once(EVIDENCE_DIR / name, png_bytes)
        except FileExistsError as exc:
            last_error = exc
            continue
        except OSError as exc:
            last_error = exc
            logger.warning(
                "evidence write failed (attempt %s/%s) for student %s: %s",
                attempt,
                EVIDENCE_UPLOAD_RETRIES,
                student_id,
                exc,
            )
            if attempt < EVIDENCE_UPLOAD_RETRIES and EVIDENCE_RETRY_DELAY_SECONDS > 0:
                time.sleep(EVIDENCE_RETRY_DELAY_SECONDS)
            continue

        logger.info("stored signature %s for student %s", name, student_id)
        return {"name": name, "url": evidence_url(name), "captured_at": captured_at}

    raise EvidenceUploadFailed(f"Signature upload failed: {last_error}")


def capture_signature(
    student_id: int,
    *,
    captured_at: datetime,
    payload: str | None = None,
    data: bytes | None = None,
) -> StoredEvidence:
    """
    Validate a signature (base64 `payload` or raw `data`) and store it.
    Blank or empty signatures are rejected before anything is written.
    """
    raw = data if data is not None else decode_base64_payload(payload)
    png_bytes = inspect_signature(raw)
    return store_evidence(student_id, png_bytes, captured_at=captured_at)


def captured_at_from_name(name: str) -> datetime:
    """Capture time encoded in a blob name (epoch milliseconds, UTC)."""
    match = BLOB_NAME_RE.match(name or "")
    if not match:
        raise EvidenceMissing("Signature reference is not a stored signature for this account.")
    return datetime.fromtimestamp(int(match.group("millis")) / 1000, tz=timezone.utc)


def resolve_evidence_reference(student_id: int, url: str | None) -> StoredEvidence:
    """
    Accept a previously uploaded signature URL only if it points at an
    existing blob stored for this student. The capture time comes from the
    blob name, not from when the reference is submitted.
    """
    reference = (url or "").strip()
    if not reference:
        raise EvidenceMissing()

    name = reference.rsplit("/", 1)[-1]
    prefixes = (f"{PUBLIC_BASE_URL}{EVIDENCE_URL_PREFIX}/", f"{EVIDENCE_URL_PREFIX}/")
    match = BLOB_NAME_RE.match(name)
    if (
        not any(reference == prefix + name for prefix in prefixes)
        or not match
        or int(match.group("student_id")) != int(student_id)
        or not (EVIDENCE_DIR / name).is_file()
    ):
        raise EvidenceMissing("Signature reference is not a stored signature for this account.")

    return {"name": name, "url": evidence_url(name), "captured_at": captured_at_from_name(name)}
