import base64
import binascii

import cv2  # type: ignore
import numpy as np  # type: ignore

from backend.config import INK_THRESHOLD, MAX_EVIDENCE_BYTES, MIN_INK_PIXELS, MIN_INK_RATIO
from backend.errors import EvidenceMissing, MalformedEvidence


def decode_base64_payload(payload: str | None) -> bytes:
    """
    Accepts plain base64 or a `data:image/...;base64,` URL as produced by
    canvas `toDataURL()`.
    """
    text = (payload or "").strip()
    if text.startswith("data:"):
        _, _, text = text.partition(",")
    if not text:
        raise EvidenceMissing()
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        raise MalformedEvidence("Signature payload is not valid base64.")


def load_grayscale(data: bytes) -> np.ndarray:
    """
    Decode image bytes to an 8-bit grayscale array on a white background.
    Transparent pixels (signature pads export transparent PNGs) count as paper.
    """
    if not data:
        raise EvidenceMissing()
    if len(data) > MAX_EVIDENCE_BYTES:
        raise MalformedEvidence("Signature image is too large.")

    img = cv2.imdecode(np.frombuffer(data, np.uint8), cv2.IMREAD_UNCHANGED)
    if img is None or img.size == 0:
        raise MalformedEvidence()

    if img.dtype == np.uint16:
        img = (img / 257).astype(np.uint8)

    if img.ndim == 2:
        return img

    channels = img.shape[2]
    if channels == 4:
        alpha = img[:, :, 3].astype(np.float32) / 255.0
        gray = cv2.cvtColor(img[:, :, :3], cv2.COLOR_BGR2GRAY).astype(np.float32)
        composited = gray * alpha + 255.0 * (1.0 - alpha)
        return np.clip(composited, 0, 255).astype(np.uint8)
    if channels == 3:
        return cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
    return img[:, :, 0]


def count_ink(gray: np.ndarray) -> int:
    return int(np.count_nonzero(gray < INK_THRESHOLD))


def is_blank(gray: np.ndarray) -> bool:
    ink = count_ink(gray)
    if ink < MIN_INK_PIXELS:
        return True
    return (ink / float(gray.size)) < MIN_INK_RATIO


def inspect_signature(data: bytes) -> bytes:
    """
    Validate a signature image and return it re-encoded as PNG.

    Raises `EvidenceMissing` for empty or blank pads and `MalformedEvidence`
    for bytes that are not a readable image.
    """
    gray = load_grayscale(data)
    if is_blank(gray):
        raise EvidenceMissing()

    ok, encoded = cv2.imencode(".png", gray)
    if not ok:
        raise MalformedEvidence("Signature image could not be encoded.")
    return encoded.tobytes()
