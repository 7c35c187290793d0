import hashlib

import pytest

import photoshelf.lib.filetype as filetype
from fakes import jpeg
from photoshelf.lib.filetype import (
    ValidationError,
    guess_media_type,
    is_allowed_media_type,
    is_image_name,
    validate_candidate,
)
from photoshelf.lib.hashing import content_digest, md5_bytes, short_digest
from photoshelf.models.domain import CandidateFile


def test_guess_media_type():
    assert guess_media_type("IMG_1234.JPG") == "image/jpeg"
    assert guess_media_type("a.webp") == "image/webp"
    assert guess_media_type("report.pdf") == "application/pdf"
    assert guess_media_type("notes") is None


def test_image_names_and_allow_list():
    assert is_image_name("photos/x.PNG")
    assert not is_image_name(".emptyFolderPlaceholder")
    assert is_allowed_media_type("IMAGE/JPG")
    assert not is_allowed_media_type(None)
    assert not is_allowed_media_type("image/heic")


def test_validate_accepts_allowed_image():
    validate_candidate(jpeg("a.jpg"))


def test_validate_rejects_wrong_type():
    with pytest.raises(ValidationError, match="Unsupported file type: application/pdf"):
        validate_candidate(jpeg("a.pdf", content_type="application/pdf"))


def test_validate_checks_declared_and_actual_size():
    under_declared = CandidateFile(name="a.jpg", data=b"x" * 2048, content_type="image/jpeg", size=10)
    with pytest.raises(ValidationError, match="File size must be less than"):
        validate_candidate(under_declared, max_size=1024)

    over_declared = CandidateFile(name="a.jpg", data=b"x" * 10, content_type="image/jpeg", size=4096)
    with pytest.raises(ValidationError):
        validate_candidate(over_declared, max_size=1024)


def test_verify_content_uses_sniffed_type(monkeypatch):
    monkeypatch.setattr(filetype, "detect_media_type", lambda data: "application/x-dosexec")
    candidate = jpeg("evil.jpg")
    validate_candidate(candidate)
    with pytest.raises(ValidationError, match="not an image"):
        validate_candidate(candidate, verify_content=True)

    monkeypatch.setattr(filetype, "detect_media_type", lambda data: None)
    validate_candidate(candidate, verify_content=True)


def test_candidate_from_path(tmp_path):
    p = tmp_path / "DSC_0001.jpeg"
    p.write_bytes(b"\xff\xd8abc")
    c = CandidateFile.from_path(p)
    assert c.name == "DSC_0001.jpeg"
    assert c.content_type == "image/jpeg"
    assert c.size == 5


def test_hashing_helpers():
    assert md5_bytes(b"abc") == "900150983cd24fb0d6963f7d28e17f72"
    # longer than one 8 KiB chunk
    assert content_digest(b"hello" * 5000) == hashlib.sha256(b"hello" * 5000).hexdigest()
    assert content_digest(b"abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert short_digest(b"abc", 6) == "BA7816"
    with pytest.raises(ValueError):
        short_digest(b"abc", 0)
