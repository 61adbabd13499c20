import hashlib
import hmac
import secrets
import sqlite3
from datetime import datetime, timezone
from typing import Any, Iterable, TypedDict

from backend.config import DB_BUSY_TIMEOUT_SECONDS, DB_PATH


PASSWORD_HASH_ALGO = "pbkdf2_sha256"
PASSWORD_HASH_ITERATIONS = 120_000
TS_FORMAT = "%Y-%m-%d %H:%M:%S"


class ClassSessionRow(TypedDict):
    id: int
    course_id: int
    session_title: str
    start_time: str
    end_time: str
    meeting_link: str | None


class AttendanceRow(TypedDict):
    id: int
    student_id: int
    session_id: int
    timestamp: str
    client_timestamp: str | None
    signature_url: str
    verified: bool
    record_signature: str | None


# -----------------------------
# Timestamps (stored as UTC text)
# -----------------------------
def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(microsecond=0)


def format_ts(value: datetime) -> str:
    return to_utc(value).strftime(TS_FORMAT)


def parse_ts(value: str) -> datetime:
    return datetime.strptime(value, TS_FORMAT).replace(tzinfo=timezone.utc)


def iso_ts(value: str | None) -> str | None:
    return parse_ts(value).isoformat() if value else None


def _hash_password(password: str, *, salt: str | None = None) -> str:
    salt_value = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt_value.encode("utf-8"),
        PASSWORD_HASH_ITERATIONS,
    ).hex()
    return f"{PASSWORD_HASH_ALGO}${PASSWORD_HASH_ITERATIONS}${salt_value}${digest}"


def _verify_password(password: str, password_hash: str) -> bool:
    try:
        algo, rounds_text, salt_value, expected_digest = password_hash.split("$", 3)
        rounds = int(rounds_text)
    except (ValueError, TypeError):
        return False

    if algo != PASSWORD_HASH_ALGO or rounds <= 0:
        return False

    candidate_digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt_value.encode("utf-8"),
        rounds,
    ).hex()
    return hmac.compare_digest(candidate_digest, expected_digest)


def connect_db():
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(DB_PATH), timeout=DB_BUSY_TIMEOUT_SECONDS, check_same_thread=False)
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def create_tables():
    conn = connect_db()
    cursor = conn.cursor()

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email TEXT NOT NULL UNIQUE COLLATE NOCASE,
        password_hash TEXT NOT NULL,
        role TEXT NOT NULL CHECK (role IN ('student', 'lecturer')),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS students (
        id INTEGER PRIMARY KEY,
        full_name TEXT NOT NULL,
        registration_number TEXT NOT NULL UNIQUE,
        department TEXT,
        year INTEGER,
        FOREIGN KEY (id) REFERENCES users(id) ON DELETE CASCADE
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS lecturers (
        id INTEGER PRIMARY KEY,
        full_name TEXT NOT NULL,
        department TEXT,
        FOREIGN KEY (id) REFERENCES users(id) ON DELETE CASCADE
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS courses (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        code TEXT NOT NULL,
        lecturer_id INTEGER NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (lecturer_id) REFERENCES lecturers(id) ON DELETE CASCADE,
        UNIQUE(lecturer_id, code)
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS enrollments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id INTEGER NOT NULL,
        course_id INTEGER NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (student_id) REFERENCES students(id) ON DELETE CASCADE,
        FOREIGN KEY (course_id) REFERENCES courses(id) ON DELETE CASCADE,
        UNIQUE(student_id, course_id)
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS class_sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        course_id INTEGER NOT NULL,
        session_title TEXT NOT NULL,
        start_time TEXT NOT NULL,        -- YYYY-MM-DD HH:MM:SS (UTC)
        end_time TEXT NOT NULL,          -- YYYY-MM-DD HH:MM:SS (UTC)
        meeting_link TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (course_id) REFERENCES courses(id) ON DELETE CASCADE,
        CHECK (end_time > start_time)
    )
    """)
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_class_sessions_window ON class_sessions (start_time, end_time)"
    )

    # One row per (student, session); the constraint is the duplicate guard.
    cursor.execute("""
    CREATE TABLE IF NOT EXISTS attendance (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id INTEGER NOT NULL,
        session_id INTEGER NOT NULL,
        timestamp TEXT NOT NULL,         -- capture time (UTC)
        client_timestamp TEXT,           -- informational only
        signature_url TEXT NOT NULL,
        verified INTEGER NOT NULL DEFAULT 0,
        record_signature TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (student_id) REFERENCES students(id) ON DELETE CASCADE,
        FOREIGN KEY (session_id) REFERENCES class_sessions(id) ON DELETE CASCADE,
        UNIQUE(student_id, session_id)
    )
    """)
    # Each stored signature backs at most one record.
    cursor.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_attendance_signature_url ON attendance (signature_url)"
    )

    conn.commit()
    conn.close()


# -----------------------------
# Users
# -----------------------------
def _create_user(cur: sqlite3.Cursor, email: str, password: str, role: str) -> int:
    cur.execute(
        """
        INSERT INTO users (email, password_hash, role)
        VALUES (?, ?, ?)
        """,
        (email.strip(), _hash_password(password), role),
    )
    return int(cur.lastrowid)


def create_student(
    email: str,
    password: str,
    full_name: str,
    registration_number: str,
    *,
    department: str | None = None,
    year: int | None = None,
) -> int:
    conn = connect_db()
    try:
        cur = conn.cursor()
        user_id = _create_user(cur, email, password, "student")
        cur.execute(
            """
            INSERT INTO students (id, full_name, registration_number, department, year)
            VALUES (?, ?, ?, ?, ?)
            """,
            (user_id, full_name, registration_number, department, year),
        )
        conn.commit()
        return user_id
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()


def create_lecturer(email: str, password: str, full_name: str, *, department: str | None = None) -> int:
    conn = connect_db()
    try:
        cur = conn.cursor()
        user_id = _create_user(cur, email, password, "lecturer")
        cur.execute(
            """
            INSERT INTO lecturers (id, full_name, department)
            VALUES (?, ?, ?)
            """,
            (user_id, full_name, department),
        )
        conn.commit()
        return user_id
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()


def verify_user_credentials(email: str, password: str) -> dict | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT id, email, password_hash, role
        FROM users
        WHERE email = ? COLLATE NOCASE
        """,
        (email.strip(),),
    )
    row = cur.fetchone()
    conn.close()

    if not row:
        return None
    if not _verify_password(password, str(row[2])):
        return None
    return {"id": int(row[0]), "email": str(row[1]), "role": str(row[3])}


# -----------------------------
# Courses + Enrollments
# -----------------------------
def create_course(lecturer_id: int, name: str, code: str) -> int:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        INSERT INTO courses (name, code, lecturer_id)
        VALUES (?, ?, ?)
    """, (name, code, lecturer_id))
    course_id = cur.lastrowid
    conn.commit()
    conn.close()
    return course_id


def get_course(course_id: int):
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        SELECT id, name, code, lecturer_id
        FROM courses
        WHERE id = ?
    """, (course_id,))
    row = cur.fetchone()
    conn.close()
    return row


def get_courses_for_lecturer(lecturer_id: int):
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        SELECT id, name, code, created_at
        FROM courses
        WHERE lecturer_id = ?
        ORDER BY name
    """, (lecturer_id,))
    rows = cur.fetchall()
    conn.close()
    return rows


def enroll_students(course_id: int, student_ids: Iterable[int]) -> int:
    """Enroll students in a course; existing pairs are left untouched."""
    conn = connect_db()
    try:
        cur = conn.cursor()
        added = 0
        for student_id in student_ids:
            cur.execute(
                """
                INSERT OR IGNORE INTO enrollments (student_id, course_id)
                VALUES (?, ?)
                """,
                (int(student_id), course_id),
            )
            added += cur.rowcount
        conn.commit()
        return added
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()


def is_enrolled(student_id: int, course_id: int, *, conn: sqlite3.Connection | None = None) -> bool:
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        cur = active_conn.cursor()
        cur.execute(
            """
            SELECT 1
            FROM enrollments
            WHERE student_id = ? AND course_id = ?
            LIMIT 1
            """,
            (student_id, course_id),
        )
        return cur.fetchone() is not None
    finally:
        if owns_conn:
            active_conn.close()


def get_enrolled_course_ids(student_id: int) -> list[int]:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("SELECT course_id FROM enrollments WHERE student_id = ?", (student_id,))
    rows = cur.fetchall()
    conn.close()
    return [int(r[0]) for r in rows]


def get_enrolled_students(course_id: int):
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        SELECT s.id, s.full_name, s.registration_number, u.email
        FROM enrollments e
        JOIN students s ON s.id = e.student_id
        JOIN users u ON u.id = s.id
        WHERE e.course_id = ?
        ORDER BY s.full_name
    """, (course_id,))
    rows = cur.fetchall()
    conn.close()
    return rows


def get_all_students():
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        SELECT id, full_name, registration_number
        FROM students
        ORDER BY full_name
    """)
    rows = cur.fetchall()
    conn.close()
    return rows


def delete_enrollment(course_id: int, student_id: int) -> bool:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        "DELETE FROM enrollments WHERE course_id = ? AND student_id = ?",
        (course_id, student_id),
    )
    deleted = cur.rowcount > 0
    conn.commit()
    conn.close()
    return deleted


# -----------------------------
# Class sessions
# -----------------------------
def _session_from_row(row: tuple) -> ClassSessionRow:
    return {
        "id": int(row[0]),
        "course_id": int(row[1]),
        "session_title": str(row[2]),
        "start_time": str(row[3]),
        "end_time": str(row[4]),
        "meeting_link": row[5],
    }


def create_class_session(
    course_id: int,
    session_title: str,
    start_time: datetime,
    end_time: datetime,
    meeting_link: str | None = None,
) -> int:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO class_sessions (course_id, session_title, start_time, end_time, meeting_link)
        VALUES (?, ?, ?, ?, ?)
        """,
        (course_id, session_title, format_ts(start_time), format_ts(end_time), meeting_link),
    )
    session_id = int(cur.lastrowid)
    conn.commit()
    conn.close()
    return session_id


def get_class_session(session_id: int, *, conn: sqlite3.Connection | None = None) -> ClassSessionRow | None:
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        cur = active_conn.cursor()
        cur.execute(
            """
            SELECT id, course_id, session_title, start_time, end_time, meeting_link
            FROM class_sessions
            WHERE id = ?
            """,
            (session_id,),
        )
        row = cur.fetchone()
        return _session_from_row(row) if row else None
    finally:
        if owns_conn:
            active_conn.close()


def get_sessions_for_course(course_id: int) -> list[ClassSessionRow]:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        SELECT id, course_id, session_title, start_time, end_time, meeting_link
        FROM class_sessions
        WHERE course_id = ?
        ORDER BY start_time ASC
    """, (course_id,))
    rows = cur.fetchall()
    conn.close()
    return [_session_from_row(r) for r in rows]


def get_live_sessions(course_ids: list[int], now: datetime) -> list[ClassSessionRow]:
    if not course_ids:
        return []
    stamp = format_ts(now)
    placeholders = ",".join("?" for _ in course_ids)
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT id, course_id, session_title, start_time, end_time, meeting_link
        FROM class_sessions
        WHERE course_id IN ({placeholders})
          AND start_time <= ?
          AND end_time >= ?
        ORDER BY start_time ASC
        """,
        (*course_ids, stamp, stamp),
    )
    rows = cur.fetchall()
    conn.close()
    return [_session_from_row(r) for r in rows]


def delete_class_session(session_id: int) -> bool:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("DELETE FROM class_sessions WHERE id = ?", (session_id,))
    deleted = cur.rowcount > 0
    conn.commit()
    conn.close()
    return deleted


# -----------------------------
# Attendance
# -----------------------------
def _attendance_from_row(row: tuple) -> AttendanceRow:
    return {
        "id": int(row[0]),
        "student_id": int(row[1]),
        "session_id": int(row[2]),
        "timestamp": str(row[3]),
        "client_timestamp": row[4],
        "signature_url": str(row[5]),
        "verified": bool(row[6]),
        "record_signature": row[7],
    }


def has_attendance(student_id: int, session_id: int, *, conn: sqlite3.Connection | None = None) -> bool:
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        cur = active_conn.cursor()
        cur.execute(
            """
            SELECT 1
            FROM attendance
            WHERE student_id = ? AND session_id = ?
            LIMIT 1
            """,
            (student_id, session_id),
        )
        return cur.fetchone() is not None
    finally:
        if owns_conn:
            active_conn.close()


def signature_in_use(signature_url: str, *, conn: sqlite3.Connection) -> bool:
    cur = conn.cursor()
    cur.execute(
        "SELECT 1 FROM attendance WHERE signature_url = ? LIMIT 1",
        (signature_url,),
    )
    return cur.fetchone() is not None


def marked_session_ids(student_id: int, session_ids: list[int]) -> set[int]:
    if not session_ids:
        return set()
    placeholders = ",".join("?" for _ in session_ids)
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT session_id
        FROM attendance
        WHERE student_id = ? AND session_id IN ({placeholders})
        """,
        (student_id, *session_ids),
    )
    rows = cur.fetchall()
    conn.close()
    return {int(r[0]) for r in rows}


def insert_attendance(
    *,
    student_id: int,
    session_id: int,
    timestamp: datetime,
    signature_url: str,
    client_timestamp: datetime | None = None,
    conn: sqlite3.Connection,
) -> AttendanceRow:
    """
    Insert one attendance row with `verified = 0` inside the caller's
    transaction. Raises `sqlite3.IntegrityError` when the (student, session)
    pair already has a row.
    """
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO attendance (student_id, session_id, timestamp, client_timestamp, signature_url, verified)
        VALUES (?, ?, ?, ?, ?, 0)
        """,
        (
            student_id,
            session_id,
            format_ts(timestamp),
            format_ts(client_timestamp) if client_timestamp else None,
            signature_url,
        ),
    )
    record_id = int(cur.lastrowid)
    cur.execute(
        """
        SELECT id, student_id, session_id, timestamp, client_timestamp, signature_url, verified, record_signature
        FROM attendance
        WHERE id = ?
        """,
        (record_id,),
    )
    return _attendance_from_row(cur.fetchone())


def set_record_signature(record_id: int, record_signature: str, *, conn: sqlite3.Connection) -> None:
    conn.execute(
        "UPDATE attendance SET record_signature = ? WHERE id = ?",
        (record_signature, record_id),
    )


def get_attendance_record(record_id: int) -> AttendanceRow | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT id, student_id, session_id, timestamp, client_timestamp, signature_url, verified, record_signature
        FROM attendance
        WHERE id = ?
        """,
        (record_id,),
    )
    row = cur.fetchone()
    conn.close()
    return _attendance_from_row(row) if row else None


def count_attendance(student_id: int, session_id: int) -> int:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        "SELECT COUNT(*) FROM attendance WHERE student_id = ? AND session_id = ?",
        (student_id, session_id),
    )
    total = int(cur.fetchone()[0])
    conn.close()
    return total


def get_attendance_for_student(student_id: int):
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        SELECT a.id, a.timestamp, a.signature_url, a.verified, cs.id, cs.session_title, c.id, c.name
        FROM attendance a
        JOIN class_sessions cs ON cs.id = a.session_id
        JOIN courses c ON c.id = cs.course_id
        WHERE a.student_id = ?
        ORDER BY a.timestamp DESC
    """, (student_id,))
    rows = cur.fetchall()
    conn.close()
    return rows


def get_attendance_for_lecturer(
    lecturer_id: int,
    *,
    course_id: int | None = None,
    session_id: int | None = None,
):
    where = ["c.lecturer_id = ?"]
    params: list[Any] = [lecturer_id]
    if course_id is not None:
        where.append("c.id = ?")
        params.append(course_id)
    if session_id is not None:
        where.append("cs.id = ?")
        params.append(session_id)

    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT
            a.id,
            a.timestamp,
            a.verified,
            a.signature_url,
            s.id,
            s.full_name,
            s.registration_number,
            cs.id,
            cs.session_title,
            c.id,
            c.name
        FROM attendance a
        JOIN students s ON s.id = a.student_id
        JOIN class_sessions cs ON cs.id = a.session_id
        JOIN courses c ON c.id = cs.course_id
        WHERE {" AND ".join(where)}
        ORDER BY a.timestamp DESC
        """,
        params,
    )
    rows = cur.fetchall()
    conn.close()
    return rows


def get_record_lecturer_id(record_id: int) -> int | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        SELECT c.lecturer_id
        FROM attendance a
        JOIN class_sessions cs ON cs.id = a.session_id
        JOIN courses c ON c.id = cs.course_id
        WHERE a.id = ?
    """, (record_id,))
    row = cur.fetchone()
    conn.close()
    return int(row[0]) if row else None


def set_attendance_verified(record_id: int, verified: bool) -> bool:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        "UPDATE attendance SET verified = ? WHERE id = ?",
        (1 if verified else 0, record_id),
    )
    updated = cur.rowcount > 0
    conn.commit()
    conn.close()
    return updated
