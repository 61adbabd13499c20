import sqlite3
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from backend.security import require_lecturer
from database.db import (
    ClassSessionRow,
    create_class_session,
    create_course,
    delete_enrollment,
    enroll_students,
    get_all_students,
    get_course,
    get_courses_for_lecturer,
    get_enrolled_students,
    get_sessions_for_course,
    iso_ts,
    to_utc,
)

router = APIRouter(dependencies=[Depends(require_lecturer)])


class CourseCreate(BaseModel):
    name: str
    code: str


class EnrollRequest(BaseModel):
    student_ids: list[int]


class SessionCreate(BaseModel):
    session_title: str
    start_time: datetime
    end_time: datetime
    meeting_link: str | None = None


def session_payload(row: ClassSessionRow) -> dict:
    return {
        "id": row["id"],
        "course_id": row["course_id"],
        "session_title": row["session_title"],
        "start_time": iso_ts(row["start_time"]),
        "end_time": iso_ts(row["end_time"]),
        "meeting_link": row["meeting_link"],
    }


def owned_course(course_id: int, session: dict):
    row = get_course(course_id)
    if not row or int(row[3]) != int(session["sub"]):
        raise HTTPException(status_code=404, detail="Course not found.")
    return row


@router.get("/courses")
def courses(session: dict = Depends(require_lecturer)):
    rows = get_courses_for_lecturer(int(session["sub"]))
    return [
        {
            "id": r[0],
            "name": r[1],
            "code": r[2],
            "created_at": r[3],
        }
        for r in rows
    ]


@router.post("/courses")
def add_course(payload: CourseCreate, session: dict = Depends(require_lecturer)):
    name = payload.name.strip()
    code = payload.code.strip()

    if not name or not code:
        raise HTTPException(status_code=400, detail="All fields are required.")

    try:
        new_id = create_course(int(session["sub"]), name, code)
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=409, detail="Course code already exists.")
    return {"id": new_id, "name": name, "code": code}


@router.get("/students")
def students():
    rows = get_all_students()
    return [
        {"id": r[0], "full_name": r[1], "registration_number": r[2]}
        for r in rows
    ]


@router.get("/courses/{course_id}/enrollments")
def course_enrollments(course_id: int, session: dict = Depends(require_lecturer)):
    owned_course(course_id, session)
    rows = get_enrolled_students(course_id)
    return [
        {
            "student_id": r[0],
            "full_name": r[1],
            "registration_number": r[2],
            "email": r[3],
        }
        for r in rows
    ]


@router.post("/courses/{course_id}/enrollments")
def enroll(course_id: int, payload: EnrollRequest, session: dict = Depends(require_lecturer)):
    owned_course(course_id, session)
    if not payload.student_ids:
        raise HTTPException(status_code=400, detail="Please select at least one student.")

    try:
        added = enroll_students(course_id, payload.student_ids)
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=400, detail="Unknown student in enrollment list.")
    return {"ok": True, "course_id": course_id, "enrolled": added}


@router.delete("/courses/{course_id}/enrollments/{student_id}")
def unenroll(course_id: int, student_id: int, session: dict = Depends(require_lecturer)):
    owned_course(course_id, session)
    if not delete_enrollment(course_id, student_id):
        raise HTTPException(status_code=404, detail="Enrollment not found.")
    return {"ok": True}


@router.get("/courses/{course_id}/sessions")
def course_sessions(course_id: int, session: dict = Depends(require_lecturer)):
    owned_course(course_id, session)
    return [session_payload(r) for r in get_sessions_for_course(course_id)]


@router.post("/courses/{course_id}/sessions")
def add_session(course_id: int, payload: SessionCreate, session: dict = Depends(require_lecturer)):
    owned_course(course_id, session)
    title = payload.session_title.strip()
    if not title:
        raise HTTPException(status_code=400, detail="Fill in all required fields.")
    if to_utc(payload.end_time) <= to_utc(payload.start_time):
        raise HTTPException(status_code=400, detail="Session must end after it starts.")

    link = (payload.meeting_link or "").strip() or None
    new_id = create_class_session(course_id, title, payload.start_time, payload.end_time, link)
    return {
        "id": new_id,
        "course_id": course_id,
        "session_title": title,
        "start_time": to_utc(payload.start_time).isoformat(),
        "end_time": to_utc(payload.end_time).isoformat(),
        "meeting_link": link,
    }
