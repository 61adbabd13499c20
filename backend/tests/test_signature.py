import base64

import cv2
import numpy as np
import pytest

import backend.signature as signature
from backend.errors import EvidenceMissing, MalformedEvidence


def test_inked_signature_is_reencoded_as_png(signature_png):
    out = signature.inspect_signature(signature_png())
    assert out.startswith(b"\x89PNG")

    decoded = cv2.imdecode(np.frombuffer(out, np.uint8), cv2.IMREAD_UNCHANGED)
    assert decoded.ndim == 2
    assert decoded.shape == (150, 500)


def test_transparent_pad_strokes_count_as_ink(signature_png):
    gray = signature.load_grayscale(signature_png(transparent=True))
    assert gray.dtype == np.uint8
    assert not signature.is_blank(gray)


@pytest.mark.parametrize("transparent", [False, True])
def test_blank_pad_is_rejected(signature_png, transparent):
    with pytest.raises(EvidenceMissing):
        signature.inspect_signature(signature_png(blank=True, transparent=transparent))


def test_single_dot_is_blank():
    img = np.full((150, 500), 255, dtype=np.uint8)
    cv2.circle(img, (250, 75), 1, 0, -1)
    ok, encoded = cv2.imencode(".png", img)
    assert ok

    with pytest.raises(EvidenceMissing):
        signature.inspect_signature(encoded.tobytes())


def test_non_image_bytes_are_malformed():
    with pytest.raises(MalformedEvidence):
        signature.inspect_signature(b"not-an-image")


def test_empty_bytes_are_missing():
    with pytest.raises(EvidenceMissing):
        signature.inspect_signature(b"")


def test_oversized_payload_is_rejected(monkeypatch, signature_png):
    monkeypatch.setattr(signature, "MAX_EVIDENCE_BYTES", 10)
    with pytest.raises(MalformedEvidence):
        signature.inspect_signature(signature_png())


def test_decode_accepts_data_url_and_plain_base64():
    raw = b"\x89PNG\r\n"
    encoded = base64.b64encode(raw).decode("ascii")
    assert signature.decode_base64_payload(encoded) == raw
    assert signature.decode_base64_payload(f"data:image/png;base64,{encoded}") == raw


@pytest.mark.parametrize("payload", [None, "", "   ", "data:image/png;base64,"])
def test_decode_empty_payload_is_missing(payload):
    with pytest.raises(EvidenceMissing):
        signature.decode_base64_payload(payload)


def test_decode_rejects_invalid_base64():
    with pytest.raises(MalformedEvidence):
        signature.decode_base64_payload("@@not base64@@")
