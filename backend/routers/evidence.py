from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import FileResponse

from backend.config import EVIDENCE_URL_PREFIX
from backend.security import student_identity
from backend.services import window
from backend.services.evidence import capture_signature, evidence_path

router = APIRouter()


# Pre-upload a signature; the returned URL can be sent to /attendance/mark.
@router.post("/evidence")
async def upload_signature(
    student_id: int = Depends(student_identity),
    file: UploadFile = File(...),
):
    if file.content_type not in ("image/jpeg", "image/png"):
        raise HTTPException(status_code=400, detail="Upload JPG/PNG only.")

    data = await file.read()
    evidence = capture_signature(student_id, captured_at=window.utc_now(), data=data)
    return {
        "success": True,
        "signature_url": evidence["url"],
        "captured_at": evidence["captured_at"].isoformat(),
    }


@router.get(EVIDENCE_URL_PREFIX + "/{name}")
def read_signature(name: str):
    path = evidence_path(name)
    if path is None or not path.is_file():
        raise HTTPException(status_code=404, detail="Signature not found.")
    return FileResponse(path, media_type="image/png")
