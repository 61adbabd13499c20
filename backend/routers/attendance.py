from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from backend.security import require_lecturer, require_student, student_identity
from backend.services.marking import mark_attendance
from database.db import (
    AttendanceRow,
    get_attendance_for_lecturer,
    get_attendance_for_student,
    get_attendance_record,
    get_record_lecturer_id,
    iso_ts,
    set_attendance_verified,
)

router = APIRouter()


class MarkRequest(BaseModel):
    session_id: int
    # Client clock; stored for display only.
    timestamp: datetime | None = None
    signature: str | None = None
    signature_url: str | None = None


class VerifyRequest(BaseModel):
    verified: bool = True


def _record_payload(record: AttendanceRow) -> dict:
    return {
        "id": record["id"],
        "student_id": record["student_id"],
        "session_id": record["session_id"],
        "timestamp": iso_ts(record["timestamp"]),
        "client_timestamp": iso_ts(record["client_timestamp"]),
        "signature_url": record["signature_url"],
        "verified": record["verified"],
    }


@router.post("/attendance/mark")
def mark(payload: MarkRequest, student_id: int = Depends(student_identity)):
    # Identity comes from the bearer token; any student_id in the body is ignored.
    result = mark_attendance(
        student_id=student_id,
        session_id=payload.session_id,
        signature=payload.signature,
        signature_url=payload.signature_url,
        client_timestamp=payload.timestamp,
    )
    body: dict = {"success": result["success"], "message": result["message"]}
    if result["reason"]:
        body["reason"] = result["reason"]
    if result["record"]:
        body["record"] = _record_payload(result["record"])
    return JSONResponse(status_code=result["status_code"], content=body)


@router.get("/attendance/me")
def my_attendance(session: dict = Depends(require_student)):
    rows = get_attendance_for_student(int(session["sub"]))
    return [
        {
            "id": r[0],
            "timestamp": iso_ts(r[1]),
            "signature_url": r[2],
            "verified": bool(r[3]),
            "session_id": r[4],
            "session_title": r[5],
            "course_id": r[6],
            "course_name": r[7],
        }
        for r in rows
    ]


@router.get("/attendance")
def lecturer_attendance(
    course_id: int | None = None,
    session_id: int | None = None,
    session: dict = Depends(require_lecturer),
):
    rows = get_attendance_for_lecturer(
        int(session["sub"]),
        course_id=course_id,
        session_id=session_id,
    )
    return [
        {
            "id": r[0],
            "timestamp": iso_ts(r[1]),
            "verified": bool(r[2]),
            "signature_url": r[3],
            "student_id": r[4],
            "full_name": r[5],
            "registration_number": r[6],
            "session_id": r[7],
            "session_title": r[8],
            "course_id": r[9],
            "course_name": r[10],
        }
        for r in rows
    ]


@router.patch("/attendance/{record_id}/verify")
def verify_attendance(
    record_id: int,
    payload: VerifyRequest,
    session: dict = Depends(require_lecturer),
):
    owner_id = get_record_lecturer_id(record_id)
    if owner_id is None or owner_id != int(session["sub"]):
        raise HTTPException(status_code=404, detail="Attendance record not found.")

    set_attendance_verified(record_id, payload.verified)
    record = get_attendance_record(record_id)
    if not record:
        raise HTTPException(status_code=404, detail="Attendance record not found.")
    return _record_payload(record)
