"""Ordered upload strategies.

A chain is a list of strategies tried in sequence. The first one always
runs; after a failure the chain only moves on to a strategy that lists the
failure's kind in ``recovers_from``. Anything else is reported as is.
"""
from __future__ import annotations

from typing import NamedTuple, Optional, Sequence

from loguru import logger

from photoshelf.backends.base import StorageError
from photoshelf.lib.identity import StoredNamePlan
from photoshelf.models.domain import StoredPhotoRecord


class StrategyResult(NamedTuple):
    record: Optional[StoredPhotoRecord]
    error: Optional[StorageError]
    attempts: int

    @property
    def success(self) -> bool:
        return self.record is not None


class UploadStrategy:
    name = "abstract"
    recovers_from: frozenset = frozenset()

    def upload(self, backend, plan: StoredNamePlan, candidate) -> StoredPhotoRecord:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class DirectUpload(UploadStrategy):
    """Put the bytes under the planned name."""
    name = "direct"

    def upload(self, backend, plan, candidate):
        return backend.put(plan.stored_name, candidate.data, candidate.content_type)


class RenamedUpload(UploadStrategy):
    """Retry a name collision under a later timestamp; the identifier is kept."""
    name = "renamed"
    recovers_from = frozenset({"conflict"})

    def __init__(self, offset_ms: int = 1):
        self.offset_ms = offset_ms

    def upload(self, backend, plan, candidate):
        return backend.put(plan.bumped(self.offset_ms).stored_name, candidate.data, candidate.content_type)


STRATEGIES = {
    DirectUpload.name: DirectUpload,
    RenamedUpload.name: RenamedUpload,
}


def build_chain(names: Sequence[str]) -> list[UploadStrategy]:
    """Instantiate strategies by name; repeated ``renamed`` entries step further ahead."""
    chain = []
    renamed_seen = 0
    for name in names:
        if name not in STRATEGIES:
            raise ValueError(f"Unknown upload strategy: {name!r} (expected one of {', '.join(STRATEGIES)})")
        if name == RenamedUpload.name:
            renamed_seen += 1
            chain.append(RenamedUpload(offset_ms=renamed_seen))
        else:
            chain.append(STRATEGIES[name]())
    if not chain:
        raise ValueError("At least one upload strategy is required")
    return chain


def run_chain(strategies: Sequence[UploadStrategy], backend, plan: StoredNamePlan, candidate) -> StrategyResult:
    """Try ``strategies`` in order; never raises for backend failures.

    Unexpected exceptions from a backend (bugs, transport errors the backend
    did not wrap) are converted to ``StorageError`` so one bad file cannot take
    down its siblings.
    """
    last_error: Optional[StorageError] = None
    attempts = 0
    for strategy in strategies:
        if last_error is not None and last_error.kind not in strategy.recovers_from:
            continue
        attempts += 1
        try:
            return StrategyResult(strategy.upload(backend, plan, candidate), None, attempts)
        except StorageError as e:
            last_error = e
        except Exception as e:
            logger.exception("unexpected error uploading {} with {}", candidate.name, strategy.name)
            last_error = StorageError(str(e) or type(e).__name__, kind="unknown")
        logger.debug("{} failed for {}: {}", strategy.name, candidate.name, last_error)
    return StrategyResult(None, last_error, attempts)
