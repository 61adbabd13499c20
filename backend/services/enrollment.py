import sqlite3

from backend.errors import NotEnrolled
from database.db import is_enrolled


def require_enrollment(student_id: int, course_id: int, *, conn: sqlite3.Connection | None = None) -> None:
    # Fails closed: no enrollment row means no attendance.
    if not is_enrolled(student_id, course_id, conn=conn):
        raise NotEnrolled()
