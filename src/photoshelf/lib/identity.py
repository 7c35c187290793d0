"""Photo identity: the deduplication key for a candidate file.

Two policies share one identifier space:

- ``FilenamePatternPolicy`` pulls a camera/export identifier out of the
  original file name (``IMG_1234.jpg`` -> ``IMG_1234``).
- ``ContentHashPolicy`` uses a truncated SHA-256 of the bytes.

Whatever the policy, a stored photo is named ``img_<epoch ms>_<IDENTIFIER>.<ext>``
so ``extract_from_stored_name`` can recover the identifier from a backend
listing without knowing which policy produced it.
"""
from __future__ import annotations

import hashlib
import re
import time
from dataclasses import dataclass, replace
from pathlib import PurePosixPath
from typing import Optional

from photoshelf.lib.hashing import short_digest

# Stored names written before this tool cut identifiers to 20 characters.
MAX_IDENTIFIER_LENGTH = 20
HASH_PREFIX_LENGTH = 16

# Tried in order, first match wins. Camera/export patterns come before the
# generic digit run, which comes before the whole-stem fallback.
FILENAME_PATTERNS = (
    ("iphone", re.compile(r"^(IMG_\d+)", re.IGNORECASE)),
    ("nikon", re.compile(r"^(DSC_\d+)", re.IGNORECASE)),
    ("pixel", re.compile(r"^(PXL_\d+_\d+)", re.IGNORECASE)),
    ("date_time", re.compile(r"^(\d{8}_\d+)")),
    ("dashed_date", re.compile(r"^(\d{4}[-_]\d{2}[-_]\d{2}_\d+)")),
    ("camera_prefix", re.compile(r"^([A-Z]{2,4}\d+)", re.IGNORECASE)),
    ("digit_run", re.compile(r"^(\d+)")),
)

STORED_NAME_PATTERN = re.compile(r"^img_(\d+)_(.+)$", re.IGNORECASE)

_EXTENSION = re.compile(r"\.[^/.]+$")


def strip_extension(filename: str) -> str:
    """Base name without directories or the final extension.

    Examples:
        >>> strip_extension('photos/IMG_1234.jpg')
        'IMG_1234'
        >>> strip_extension('IMG_1234')
        'IMG_1234'
    """
    return _EXTENSION.sub("", PurePosixPath(filename.replace("\\", "/")).name)


def sanitize_identifier(value: str) -> str:
    """Reduce a raw identifier to ``[A-Z0-9_]``, upper-cased.

    May return an empty string; callers decide what an empty identifier means.
    """
    cleaned = re.sub(r"[^a-zA-Z0-9]", "_", value)
    cleaned = re.sub(r"_{2,}", "_", cleaned).strip("_")
    return cleaned.upper()[:MAX_IDENTIFIER_LENGTH].rstrip("_")


def sanitize_file_name(name: str) -> str:
    """Storage-safe lower-case file name (letters, digits, dot, dash, underscore)."""
    cleaned = re.sub(r"[^a-zA-Z0-9._-]", "_", PurePosixPath(name.replace("\\", "/")).name)
    cleaned = re.sub(r"_{2,}", "_", cleaned).strip("_")
    return cleaned.lower()


def _unnamed_identifier(original_name: str) -> str:
    digest = hashlib.sha1(original_name.encode("utf-8")).hexdigest()[:8].upper()
    return f"UNNAMED_{digest}"


def identifier_from_filename(filename: str) -> str:
    """Apply the filename pattern table to ``filename``.

    Always returns a non-empty identifier: a stem made only of punctuation
    falls back to ``UNNAMED_<sha1 prefix of the name>``.
    """
    stem = strip_extension(filename)
    for _label, pattern in FILENAME_PATTERNS:
        match = pattern.match(stem)
        if match:
            ident = sanitize_identifier(match.group(1))
            if ident:
                return ident
    return sanitize_identifier(stem) or _unnamed_identifier(filename)


class IdentityPolicy:
    """Maps a candidate file to a photo identifier. Must be pure."""
    name = "abstract"

    def resolve(self, candidate) -> str:
        raise NotImplementedError


class FilenamePatternPolicy(IdentityPolicy):
    name = "filename"

    def resolve(self, candidate) -> str:
        return identifier_from_filename(candidate.name)


class ContentHashPolicy(IdentityPolicy):
    name = "content-hash"

    def __init__(self, prefix_length: int = HASH_PREFIX_LENGTH, algorithm: str = "sha256"):
        if not 0 < prefix_length <= MAX_IDENTIFIER_LENGTH:
            raise ValueError(f"prefix_length must be between 1 and {MAX_IDENTIFIER_LENGTH}")
        self.prefix_length = prefix_length
        self.algorithm = algorithm

    def resolve(self, candidate) -> str:
        return short_digest(candidate.data, self.prefix_length, self.algorithm)


POLICIES = {
    FilenamePatternPolicy.name: FilenamePatternPolicy,
    ContentHashPolicy.name: ContentHashPolicy,
}


def get_policy(name: str) -> IdentityPolicy:
    try:
        return POLICIES[name]()
    except KeyError:
        raise ValueError(f"Unknown identity policy: {name!r} (expected one of {', '.join(POLICIES)})") from None


def extract_from_stored_name(name: str) -> Optional[str]:
    """Recover the identifier embedded in a stored photo name.

    Returns None for names that do not follow ``img_<timestamp>_<id>.<ext>``
    (legacy uploads, files added by hand); callers treat that as "not known".

    Examples:
        >>> extract_from_stored_name('photos/img_1700000000000_IMG_1234.jpg')
        'IMG_1234'
        >>> extract_from_stored_name('holiday.jpg') is None
        True
    """
    match = STORED_NAME_PATTERN.match(strip_extension(name))
    if not match:
        return None
    return sanitize_identifier(match.group(2)) or None


@dataclass(frozen=True)
class StoredNamePlan:
    """Everything needed to build the storage key for one upload."""
    identifier: str
    extension: str
    timestamp_ms: int

    @classmethod
    def for_candidate(cls, candidate, identifier: str, timestamp_ms: Optional[int] = None) -> "StoredNamePlan":
        safe_name = sanitize_file_name(candidate.name)
        extension = safe_name.rsplit(".", 1)[1] if "." in safe_name else ""
        if timestamp_ms is None:
            timestamp_ms = int(time.time() * 1000)
        return cls(identifier=identifier, extension=extension or "jpg", timestamp_ms=timestamp_ms)

    @property
    def stored_name(self) -> str:
        return build_stored_name(self.identifier, self.timestamp_ms, self.extension)

    def bumped(self, by: int = 1) -> "StoredNamePlan":
        """Same identifier under a later timestamp, for name collisions."""
        return replace(self, timestamp_ms=self.timestamp_ms + by)


def build_stored_name(identifier: str, timestamp_ms: int, extension: str = "jpg") -> str:
    """Storage key for ``identifier``: ``img_<timestamp>_<identifier>.<ext>``."""
    return f"img_{int(timestamp_ms)}_{identifier}.{extension.lstrip('.').lower() or 'jpg'}"
