from typing import Literal

ReasonCode = Literal[
    "authentication_failed",
    "not_enrolled",
    "no_active_session",
    "already_marked",
    "evidence_missing",
    "malformed_evidence",
    "evidence_upload_failed",
    "commit_failed",
]


class MarkingError(Exception):
    """
    Base for every rejection the marking pipeline can produce.

    `system` separates conditions needing operator attention (storage or
    database trouble) from user-correctable outcomes.
    """

    code: ReasonCode = "commit_failed"
    status_code: int = 500
    default_message: str = "Submission failed."
    system: bool = False

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_payload(self) -> dict:
        return {"success": False, "reason": self.code, "message": self.message}


class AuthenticationFailed(MarkingError):
    code = "authentication_failed"
    status_code = 401
    default_message = "Authentication failed."


class NotEnrolled(MarkingError):
    code = "not_enrolled"
    status_code = 403
    default_message = "You are not enrolled in this course."


class NoActiveSession(MarkingError):
    code = "no_active_session"
    status_code = 409
    default_message = "No active class session right now."


class AlreadyMarked(MarkingError):
    code = "already_marked"
    status_code = 409
    default_message = "Attendance already marked for this session."


class EvidenceMissing(MarkingError):
    code = "evidence_missing"
    status_code = 400
    default_message = "Please provide a signature before submitting."


class MalformedEvidence(MarkingError):
    code = "malformed_evidence"
    status_code = 400
    default_message = "Signature image could not be read."


class EvidenceUploadFailed(MarkingError):
    code = "evidence_upload_failed"
    status_code = 502
    default_message = "Signature upload failed."
    system = True


class CommitFailed(MarkingError):
    code = "commit_failed"
    status_code = 500
    default_message = "Submission failed."
    system = True
