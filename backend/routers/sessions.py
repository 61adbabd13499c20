from fastapi import APIRouter, Depends, HTTPException

from backend.routers.courses import owned_course, session_payload
from backend.security import require_lecturer, require_student
from backend.services.window import list_live_sessions
from database.db import (
    delete_class_session,
    get_class_session,
    get_enrolled_course_ids,
    marked_session_ids,
)

router = APIRouter()


@router.get("/sessions/live")
def live_sessions(session: dict = Depends(require_student)):
    student_id = int(session["sub"])
    rows = list_live_sessions(get_enrolled_course_ids(student_id))
    marked = marked_session_ids(student_id, [r["id"] for r in rows])
    return [
        {**session_payload(r), "marked": r["id"] in marked}
        for r in rows
    ]


@router.delete("/sessions/{session_id}")
def remove_session(session_id: int, session: dict = Depends(require_lecturer)):
    row = get_class_session(session_id)
    if not row:
        raise HTTPException(status_code=404, detail="Session not found.")
    owned_course(row["course_id"], session)

    delete_class_session(session_id)
    return {"ok": True}
