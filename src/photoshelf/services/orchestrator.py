"""Upload orchestrator: turn a batch of candidate files into one outcome each.

Phases per batch:

1. validate and resolve every candidate; rejects never reach the backend
2. fetch known identifiers from the backend listing (failure degrades to
   whatever was read before it, possibly nothing); candidates already known
   become duplicates without an upload call
3. upload the rest in fixed-size groups: members of a group run concurrently,
   groups run one after another
4. collect exactly one outcome per candidate, in input order

Identifier claims are made on the calling thread while a group is formed, so
two candidates with the same identifier never upload concurrently and a later
group always sees the successes of earlier ones.
"""
from __future__ import annotations

import concurrent.futures
import time
from typing import Callable, Iterable, Optional, Sequence

from loguru import logger

from photoshelf.backends.base import StorageError
from photoshelf.lib.filetype import ALLOWED_MEDIA_TYPES, MAX_FILE_SIZE, ValidationError, validate_candidate
from photoshelf.lib.identity import (
    FilenamePatternPolicy,
    IdentityPolicy,
    StoredNamePlan,
    extract_from_stored_name,
    get_policy,
)
from photoshelf.models.domain import CandidateFile, UploadOutcome, UploadReport
from photoshelf.services.strategies import UploadStrategy, build_chain, run_chain

DEFAULT_GROUP_SIZE = 3


class BatchError(Exception):
    """The batch could not be processed at all (nothing was partitioned)."""
    pass


def fetch_known_identifiers(backend) -> set[str]:
    """Identifiers extractable from the backend listing.

    Never raises: a listing failure keeps what earlier pages produced and is
    logged as a warning. Names without an embedded identifier are skipped.
    """
    known: set[str] = set()
    try:
        for record in backend.list():
            ident = extract_from_stored_name(record.name)
            if ident:
                known.add(ident)
    except StorageError as e:
        logger.warning("could not list existing photos, assuming {} known: {}", len(known), e)
    except Exception as e:
        logger.opt(exception=e).warning("listing existing photos failed, assuming {} known", len(known))
    return known


class UploadOrchestrator:
    """Deduplicating, bounded-concurrency uploader for one storage backend.

    Args:
        backend: Storage backend (``list``/``put``)
        policy: Identity policy; defaults to filename patterns
        group_size: Uploads in flight at once; groups run sequentially
        group_delay: Seconds to wait between groups
        strategies: Upload strategy chain (default ``direct`` then ``renamed``)
        allowed_types: Media type allow-list
        max_file_size: Size limit in bytes
        verify_content: Also sniff the bytes with libmagic during validation
        on_stored: Called once after a batch that stored at least one photo
                   (e.g. to invalidate a gallery cache)
    """

    def __init__(
        self,
        backend,
        policy: Optional[IdentityPolicy] = None,
        group_size: int = DEFAULT_GROUP_SIZE,
        group_delay: float = 0.0,
        strategies: Optional[Sequence[UploadStrategy]] = None,
        allowed_types=ALLOWED_MEDIA_TYPES,
        max_file_size: int = MAX_FILE_SIZE,
        verify_content: bool = False,
        on_stored: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if group_size < 1:
            raise ValueError("group_size must be at least 1")
        self.backend = backend
        self.policy = policy or FilenamePatternPolicy()
        self.group_size = group_size
        self.group_delay = group_delay
        self.strategies = list(strategies) if strategies else build_chain(["direct", "renamed"])
        self.allowed_types = allowed_types
        self.max_file_size = max_file_size
        self.verify_content = verify_content
        self.on_stored = on_stored
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_settings(cls, backend, settings, on_stored: Optional[Callable[[], None]] = None) -> "UploadOrchestrator":
        return cls(
            backend,
            policy=get_policy(settings.identity_policy),
            group_size=settings.group_size,
            group_delay=settings.group_delay,
            strategies=build_chain(settings.upload_strategies),
            allowed_types=settings.allowed_types,
            max_file_size=settings.max_file_size,
            verify_content=settings.verify_content,
            on_stored=on_stored,
        )

    def _resolve(self, candidate: CandidateFile) -> tuple[Optional[str], Optional[UploadOutcome]]:
        """Validate and resolve one candidate; returns (identifier, failure)."""
        try:
            validate_candidate(candidate, self.allowed_types, self.max_file_size, self.verify_content)
        except ValidationError as e:
            return None, UploadOutcome.failed(candidate, str(e), error_kind="validation")
        try:
            return self.policy.resolve(candidate), None
        except Exception as e:
            logger.opt(exception=e).error("could not resolve identifier for {}", candidate.name)
            return None, UploadOutcome.failed(candidate, f"Cannot identify file: {e}", error_kind="identity")

    def _upload_one(self, candidate: CandidateFile, identifier: str, timestamp_ms: int):
        plan = StoredNamePlan.for_candidate(candidate, identifier, timestamp_ms)
        return run_chain(self.strategies, self.backend, plan, candidate)

    def upload(self, candidates: Iterable[CandidateFile]) -> UploadReport:
        """Upload a batch and report one outcome per candidate, in input order.

        Raises:
            BatchError: only if ``candidates`` cannot be enumerated
        """
        try:
            batch = list(candidates)
        except Exception as e:
            raise BatchError(f"Cannot read upload batch: {e}") from e

        report = UploadReport()
        if not batch:
            return report

        outcomes: list[Optional[UploadOutcome]] = [None] * len(batch)
        resolved: list[tuple[int, str]] = []
        for index, candidate in enumerate(batch):
            identifier, failure = self._resolve(candidate)
            if failure is not None:
                outcomes[index] = failure
            else:
                resolved.append((index, identifier))

        # a batch that is entirely invalid never touches the backend
        known = fetch_known_identifiers(self.backend) if resolved else set()
        pending: list[tuple[int, str]] = []
        for index, identifier in resolved:
            if identifier in known:
                outcomes[index] = UploadOutcome.duplicate(batch[index], identifier)
            else:
                pending.append((index, identifier))

        if pending:
            logger.info("uploading {} of {} file(s) in groups of {}", len(pending), len(batch), self.group_size)
            report.upload_calls = self._upload_groups(batch, pending, known, outcomes)
        else:
            logger.info("nothing to upload: {} file(s) all duplicate or invalid", len(batch))

        report.outcomes = [o for o in outcomes if o is not None]
        if len(report.outcomes) != len(batch):
            # every index is filled above; a gap here is a bug, not a file failure
            raise RuntimeError("upload batch lost track of a candidate")

        if report.succeeded and self.on_stored is not None:
            self.on_stored()
        return report

    def _upload_groups(self, batch, pending, known, outcomes) -> int:
        calls = 0
        queue = list(pending)
        first_group = True
        with concurrent.futures.ThreadPoolExecutor(max_workers=self.group_size) as ex:
            while queue:
                group: list[tuple[int, str]] = []
                deferred: list[tuple[int, str]] = []
                claimed: set[str] = set()
                for index, identifier in queue:
                    if identifier in known:
                        # stored by an earlier group
                        outcomes[index] = UploadOutcome.duplicate(batch[index], identifier)
                    elif identifier in claimed or len(group) >= self.group_size:
                        deferred.append((index, identifier))
                    else:
                        claimed.add(identifier)
                        group.append((index, identifier))
                queue = deferred
                if not group:
                    continue

                if not first_group and self.group_delay > 0:
                    self._sleep(self.group_delay)
                first_group = False

                timestamp_ms = int(self._clock() * 1000)
                futures = {
                    ex.submit(self._upload_one, batch[index], identifier, timestamp_ms): (index, identifier)
                    for index, identifier in group
                }
                # fan-in: the group settles only when every member has
                concurrent.futures.wait(futures)
                for fut, (index, identifier) in futures.items():
                    candidate = batch[index]
                    result = fut.result()
                    calls += result.attempts
                    if result.success:
                        known.add(identifier)
                        outcomes[index] = UploadOutcome.succeeded(candidate, identifier, result.record)
                        logger.info("uploaded {} as {}", candidate.name, result.record.name)
                    else:
                        error = result.error
                        outcomes[index] = UploadOutcome.failed(
                            candidate,
                            str(error) if error else "Upload failed",
                            error_kind=error.kind if error else "unknown",
                            identifier=identifier,
                        )
                        logger.warning("upload failed for {}: {}", candidate.name, error)
        return calls

    def retry_failed(self, report: UploadReport) -> UploadReport:
        """Re-run the batch for the failed candidates of ``report`` only."""
        return self.upload(report.failed_candidates())
