import base64
from datetime import datetime, timezone

import cv2
import numpy as np
import pytest
from fastapi.testclient import TestClient

import backend.config as config
import backend.main as main
import backend.services.evidence as evidence
import backend.services.window as window
import database.db as db
from backend.security import issue_session_token

SESSION_START = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
SESSION_END = datetime(2026, 3, 2, 10, 30, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def set(self, hour: int, minute: int, second: int = 0) -> None:
        self.now = datetime(2026, 3, 2, hour, minute, second, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def storage(tmp_path, monkeypatch):
    test_db = tmp_path / "classmark_test.db"
    evidence_dir = tmp_path / "signatures"

    # Point DB and evidence storage to temp paths for isolation.
    monkeypatch.setattr(config, "DB_PATH", test_db)
    monkeypatch.setattr(db, "DB_PATH", test_db)
    monkeypatch.setattr(config, "EVIDENCE_DIR", evidence_dir)
    monkeypatch.setattr(evidence, "EVIDENCE_DIR", evidence_dir)
    monkeypatch.setattr(evidence, "EVIDENCE_RETRY_DELAY_SECONDS", 0)

    db.create_tables()
    return evidence_dir


@pytest.fixture()
def clock(monkeypatch):
    fixed = FixedClock(datetime(2026, 3, 2, 10, 15, tzinfo=timezone.utc))
    monkeypatch.setattr(window, "utc_now", fixed)
    return fixed


@pytest.fixture()
def campus(storage):
    lecturer_id = db.create_lecturer("lecturer@campus.test", "lecturer-pass", "Dr. Ada Byron")
    course_id = db.create_course(lecturer_id, "Distributed Systems", "CS401")
    student_e = db.create_student("e@campus.test", "student-pass", "Student E", "REG-E-001")
    student_f = db.create_student("f@campus.test", "student-pass", "Student F", "REG-F-001")
    db.enroll_students(course_id, [student_e])
    session_id = db.create_class_session(
        course_id,
        "Week 1 Lecture",
        SESSION_START,
        SESSION_END,
        "https://meet.example.test/cs401",
    )
    return {
        "lecturer_id": lecturer_id,
        "course_id": course_id,
        "student_e": student_e,
        "student_f": student_f,
        "session_id": session_id,
    }


@pytest.fixture()
def client(storage):
    with TestClient(main.app) as c:
        yield c


@pytest.fixture()
def bearer():
    def _headers(user_id: int, role: str) -> dict:
        token, _ = issue_session_token(user_id, role=role)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def signature_png():
    def _png(*, blank: bool = False, transparent: bool = False) -> bytes:
        if transparent:
            img = np.zeros((150, 500, 4), dtype=np.uint8)
            if not blank:
                cv2.line(img, (30, 70), (470, 95), (0, 0, 0, 255), 4)
                cv2.line(img, (60, 110), (300, 40), (0, 0, 0, 255), 3)
        else:
            img = np.full((150, 500), 255, dtype=np.uint8)
            if not blank:
                cv2.line(img, (30, 70), (470, 95), 0, 4)
                cv2.line(img, (60, 110), (300, 40), 0, 3)
        ok, encoded = cv2.imencode(".png", img)
        assert ok
        return encoded.tobytes()

    return _png


@pytest.fixture()
def signature_b64(signature_png):
    def _b64(**kwargs) -> str:
        raw = base64.b64encode(signature_png(**kwargs)).decode("ascii")
        return f"data:image/png;base64,{raw}"

    return _b64
