import logging
import sqlite3
from datetime import datetime
from typing import TypedDict

from backend.errors import (
    AlreadyMarked,
    CommitFailed,
    EvidenceMissing,
    MarkingError,
    NoActiveSession,
    ReasonCode,
)
from backend.security import sign_record
from backend.services import window
from backend.services.enrollment import require_enrollment
from backend.services.evidence import capture_signature, resolve_evidence_reference
from database.db import (
    AttendanceRow,
    ClassSessionRow,
    connect_db,
    get_class_session,
    has_attendance,
    insert_attendance,
    set_record_signature,
    signature_in_use,
)

logger = logging.getLogger(__name__)

_WINDOW_MESSAGES = {
    "missing": "No active class session right now.",
    "not_started": "This class session has not started yet.",
    "ended": "This class session has ended.",
}


class MarkResult(TypedDict):
    success: bool
    reason: ReasonCode | None
    message: str
    status_code: int
    record: AttendanceRow | None


def _load_live_session(
    session_id: int,
    now: datetime,
    *,
    conn: sqlite3.Connection | None = None,
) -> ClassSessionRow:
    session = get_class_session(session_id, conn=conn)
    state = window.evaluate_window(session, now)
    if state != "live" or session is None:
        raise NoActiveSession(_WINDOW_MESSAGES.get(state))
    return session


def check_eligibility(student_id: int, session_id: int, now: datetime) -> ClassSessionRow:
    """
    Cheap checks run before any evidence is stored: live window, enrollment,
    and an early duplicate check. `commit_attendance` repeats all of them.
    """
    session = _load_live_session(session_id, now)
    require_enrollment(student_id, session["course_id"])
    if has_attendance(student_id, session_id):
        raise AlreadyMarked()
    return session


def commit_attendance(
    *,
    student_id: int,
    session_id: int,
    signature_url: str,
    captured_at: datetime,
    client_timestamp: datetime | None = None,
) -> AttendanceRow:
    """
    Write exactly one attendance record inside a single write transaction.

    The window and enrollment are re-evaluated against the server clock at
    commit time, and the evidence must have been captured inside the window
    and not already back another record. The UNIQUE constraints settle
    concurrent submissions.
    """
    if not signature_url:
        raise EvidenceMissing()

    conn = connect_db()
    try:
        conn.execute("BEGIN IMMEDIATE")
        session = _load_live_session(session_id, window.utc_now(), conn=conn)
        require_enrollment(student_id, session["course_id"], conn=conn)
        if window.evaluate_window(session, captured_at) != "live":
            raise EvidenceMissing("Signature was not captured during this class session.")
        if has_attendance(student_id, session_id, conn=conn):
            raise AlreadyMarked()
        if signature_in_use(signature_url, conn=conn):
            raise EvidenceMissing("This signature has already been used.")

        try:
            record = insert_attendance(
                student_id=student_id,
                session_id=session_id,
                timestamp=captured_at,
                signature_url=signature_url,
                client_timestamp=client_timestamp,
                conn=conn,
            )
        except sqlite3.IntegrityError as exc:
            message = str(exc)
            if "signature_url" in message:
                raise EvidenceMissing("This signature has already been used.") from exc
            if "UNIQUE" in message.upper():
                raise AlreadyMarked() from exc
            raise

        record["record_signature"] = sign_record(record)
        set_record_signature(record["id"], record["record_signature"], conn=conn)
        conn.commit()
        return record
    except MarkingError:
        conn.rollback()
        raise
    except sqlite3.Error as exc:
        conn.rollback()
        raise CommitFailed(f"Submission failed: {exc}") from exc
    finally:
        conn.close()


def _failure(exc: MarkingError) -> MarkResult:
    return {
        "success": False,
        "reason": exc.code,
        "message": exc.message,
        "status_code": exc.status_code,
        "record": None,
    }


def mark_attendance(
    *,
    student_id: int,
    session_id: int,
    signature: str | None = None,
    signature_url: str | None = None,
    client_timestamp: datetime | None = None,
) -> MarkResult:
    """
    Run the marking pipeline for one submission.

    `student_id` must come from the verified credential. Steps run in order
    (window, enrollment, duplicate check, evidence, commit) and stop at the
    first failure.
    """
    now = window.utc_now()
    try:
        check_eligibility(student_id, session_id, now)

        if signature:
            evidence = capture_signature(student_id, captured_at=now, payload=signature)
        else:
            evidence = resolve_evidence_reference(student_id, signature_url)

        record = commit_attendance(
            student_id=student_id,
            session_id=session_id,
            signature_url=evidence["url"],
            captured_at=evidence["captured_at"],
            client_timestamp=client_timestamp,
        )
    except MarkingError as exc:
        if exc.system:
            logger.error(
                "attendance rejected student=%s session=%s reason=%s: %s",
                student_id,
                session_id,
                exc.code,
                exc.message,
                exc_info=exc,
            )
        else:
            logger.info(
                "attendance rejected student=%s session=%s reason=%s",
                student_id,
                session_id,
                exc.code,
            )
        return _failure(exc)

    logger.info("attendance recorded id=%s student=%s session=%s", record["id"], student_id, session_id)
    return {
        "success": True,
        "reason": None,
        "message": "Attendance marked.",
        "status_code": 200,
        "record": record,
    }
