"""Value types passed between the identity resolver, the orchestrator and
the storage backends.

None of these are persisted by the core: a ``StoredPhotoRecord`` is the
backend's description of something it already stores, and ``UploadOutcome``
lives only as long as the report that carries it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Optional

from photoshelf.lib.filetype import guess_media_type


@dataclass(frozen=True)
class CandidateFile:
    """A file the user wants to add, held in memory until its outcome is known."""
    name: str
    data: bytes
    content_type: str
    size: Optional[int] = None

    def __post_init__(self):
        if self.size is None:
            # frozen dataclass: bypass __setattr__ for the derived default
            object.__setattr__(self, "size", len(self.data))

    @classmethod
    def from_path(cls, path: str | Path, content_type: Optional[str] = None) -> "CandidateFile":
        """Read a file from disk, declaring its type from the name unless given."""
        p = Path(path)
        data = p.read_bytes()
        declared = content_type or guess_media_type(p.name) or "application/octet-stream"
        return cls(name=p.name, data=data, content_type=declared, size=len(data))

    def __repr__(self) -> str:
        return f"CandidateFile('{self.name}', type={self.content_type}, size={self.size})"


@dataclass(frozen=True)
class StoredPhotoRecord:
    """A photo as the storage backend reports it."""
    name: str
    url: str
    uploaded_at: Optional[datetime] = None
    size: Optional[int] = None
    content_type: Optional[str] = None

    @property
    def filename(self) -> str:
        """Get the final path component of the storage key."""
        return PurePosixPath(self.name).name


SUCCEEDED = "succeeded"
DUPLICATE = "duplicate"
FAILED = "failed"


@dataclass(frozen=True)
class UploadOutcome:
    """Per-file result of an upload batch.

    Build these through ``succeeded``, ``duplicate`` and ``failed`` rather than
    the constructor so the fields that matter for each status are filled in.
    """
    candidate: CandidateFile
    status: str
    identifier: Optional[str] = None
    record: Optional[StoredPhotoRecord] = None
    existing_identifier: Optional[str] = None
    reason: str = ""
    error_kind: Optional[str] = None

    @classmethod
    def succeeded(cls, candidate: CandidateFile, identifier: str, record: StoredPhotoRecord) -> "UploadOutcome":
        return cls(candidate=candidate, status=SUCCEEDED, identifier=identifier, record=record)

    @classmethod
    def duplicate(cls, candidate: CandidateFile, identifier: str) -> "UploadOutcome":
        return cls(candidate=candidate, status=DUPLICATE, identifier=identifier, existing_identifier=identifier)

    @classmethod
    def failed(cls, candidate: CandidateFile, reason: str, error_kind: str = "unknown",
               identifier: Optional[str] = None) -> "UploadOutcome":
        return cls(candidate=candidate, status=FAILED, identifier=identifier, reason=reason, error_kind=error_kind)

    @property
    def url(self) -> Optional[str]:
        return self.record.url if self.record else None

    @property
    def ok(self) -> bool:
        return self.status != FAILED


@dataclass
class UploadReport:
    """Outcomes of one orchestrator invocation, one per input candidate."""
    outcomes: list[UploadOutcome] = field(default_factory=list)
    upload_calls: int = 0

    @property
    def succeeded(self) -> list[UploadOutcome]:
        return [o for o in self.outcomes if o.status == SUCCEEDED]

    @property
    def duplicates(self) -> list[UploadOutcome]:
        return [o for o in self.outcomes if o.status == DUPLICATE]

    @property
    def failed(self) -> list[UploadOutcome]:
        return [o for o in self.outcomes if o.status == FAILED]

    def failed_candidates(self) -> list[CandidateFile]:
        """Candidates to hand back to the orchestrator for a manual retry."""
        return [o.candidate for o in self.failed]

    def __len__(self) -> int:
        return len(self.outcomes)

    def __repr__(self) -> str:
        return (f"UploadReport(succeeded={len(self.succeeded)}, "
                f"duplicates={len(self.duplicates)}, failed={len(self.failed)})")
