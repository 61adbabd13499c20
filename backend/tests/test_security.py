import pytest

import backend.security as security


def test_token_round_trip():
    token, claims = security.issue_session_token(42, role="student")
    payload = security.decode_session_token(token)
    assert payload == claims
    assert payload["sub"] == "42"
    assert payload["role"] == "student"


def test_tampered_token_is_rejected():
    token, _ = security.issue_session_token(42, role="student")
    payload_b64, signature = token.split(".", 1)
    forged, _ = security.issue_session_token(7, role="lecturer")
    forged_payload = forged.split(".", 1)[0]

    assert security.decode_session_token(f"{forged_payload}.{signature}") is None
    assert security.decode_session_token(payload_b64) is None
    assert security.decode_session_token("") is None


def test_expired_token_is_rejected(monkeypatch):
    monkeypatch.setattr(security, "AUTH_TOKEN_TTL_SECONDS", -10)
    token, _ = security.issue_session_token(42, role="student")
    assert security.decode_session_token(token) is None


def test_unknown_role_cannot_be_issued():
    with pytest.raises(ValueError):
        security.issue_session_token(1, role="admin")


def test_record_signature_covers_committed_fields():
    record = {
        "id": 1,
        "student_id": 2,
        "session_id": 3,
        "timestamp": "2026-03-02 10:15:00",
        "signature_url": "http://127.0.0.1:8000/evidence/student-2-1-ab.png",
    }
    signed = {**record, "record_signature": security.sign_record(record)}
    assert security.verify_record_signature(signed)
    assert not security.verify_record_signature({**signed, "session_id": 4})
    assert not security.verify_record_signature(record)


def test_non_ascii_token_signature_is_rejected():
    token, _ = security.issue_session_token(42, role="student")
    payload_b64 = token.split(".", 1)[0]
    assert security.decode_session_token(f"{payload_b64}.\xe9\xe9") is None
    assert security.decode_session_token("abc.\xe9\xe9") is None
