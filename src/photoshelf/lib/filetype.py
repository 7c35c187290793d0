"""Media type helpers: the upload allow-list, candidate validation and
magic-byte sniffing.

Declared types come from the client (or from the file name); the sniffed type
comes from the bytes themselves and is only consulted when content
verification is switched on.
"""
from pathlib import PurePosixPath
from typing import Optional

ALLOWED_MEDIA_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif")

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp")

MAX_FILE_SIZE = 10 * 1024 * 1024

_EXTENSION_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".heic": "image/heic",
    ".heif": "image/heif",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".pdf": "application/pdf",
    ".txt": "text/plain",
}


class ValidationError(Exception):
    """Raised when a candidate file is rejected before any network call."""
    pass


def detect_media_type(data: bytes) -> Optional[str]:
    """Detect the actual media type of a buffer using magic bytes.

    Returns:
        Media type string (e.g. 'image/png') or None if libmagic is not
        usable or detection fails

    Examples:
        >>> detect_media_type(b"\\x89PNG\\r\\n\\x1a\\n...")
        'image/png'
    """
    try:
        import magic
    except Exception:
        return None

    try:
        return magic.from_buffer(data[:4096], mime=True)
    except Exception:
        return None


def guess_media_type(filename: str) -> Optional[str]:
    """Declared media type for a file name, the way a browser would guess it.

    Examples:
        >>> guess_media_type('IMG_1234.JPG')
        'image/jpeg'
        >>> guess_media_type('notes')
        None
    """
    return _EXTENSION_TYPES.get(PurePosixPath(filename).suffix.lower())


def is_image_name(filename: str) -> bool:
    """True if the name carries one of the gallery's image extensions."""
    return PurePosixPath(filename).suffix.lower() in IMAGE_EXTENSIONS


def is_allowed_media_type(media_type: Optional[str], allowed=ALLOWED_MEDIA_TYPES) -> bool:
    if not media_type:
        return False
    return media_type.lower() in {t.lower() for t in allowed}


def validate_candidate(
    candidate,
    allowed_types=ALLOWED_MEDIA_TYPES,
    max_size: int = MAX_FILE_SIZE,
    verify_content: bool = False,
) -> None:
    """Reject a candidate with the wrong type or too many bytes.

    Both the declared size and the real length of the data are checked, so a
    client cannot under-declare its way past the limit.

    Raises:
        ValidationError: with a message suitable for showing to the user
    """
    if not is_allowed_media_type(candidate.content_type, allowed_types):
        raise ValidationError(f"Unsupported file type: {candidate.content_type}")

    actual = len(candidate.data)
    declared = candidate.size if candidate.size is not None else actual
    if max(declared, actual) > max_size:
        limit_mb = max_size / (1024 * 1024)
        raise ValidationError(f"File size must be less than {limit_mb:g}MB")

    if verify_content:
        sniffed = detect_media_type(candidate.data)
        # libmagic unavailable -> nothing to compare against
        if sniffed and not sniffed.startswith("image/"):
            raise ValidationError(f"File content is {sniffed}, not an image")
