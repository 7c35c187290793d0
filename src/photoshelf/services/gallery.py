"""Read side of the photo store: cached listing plus deletion."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Sequence

from loguru import logger

from photoshelf.backends.base import StorageError
from photoshelf.lib.cache import TTLCache
from photoshelf.lib.filetype import is_image_name
from photoshelf.lib.identity import extract_from_stored_name
from photoshelf.models.domain import StoredPhotoRecord

PHOTOS_KEY = "photos"

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class PartialDeleteError(StorageError):
    """``delete_all`` removed some photos but not all of them.

    ``deleted`` is how many were removed; ``failed`` maps each name that is
    still stored to the error its removal raised.
    """

    def __init__(self, deleted: int, failed: dict[str, StorageError]):
        first = next(iter(failed.values()))
        super().__init__(f"Could not delete {len(failed)} photo(s): {', '.join(failed)}",
                         kind=first.kind, status=first.status)
        self.deleted = deleted
        self.failed = failed


def _sort_key(record: StoredPhotoRecord):
    ts = record.uploaded_at
    if ts is None:
        return _EPOCH
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class Gallery:
    """Photo listing for display, cached in a caller-owned ``TTLCache``.

    When the backend cannot be listed, ``fallback_images`` (URLs) are returned
    as records so a page still has something to show. Fallbacks are never
    cached.
    """

    def __init__(self, backend, cache: Optional[TTLCache] = None, ttl: float = 300.0,
                 fallback_images: Sequence[str] = ()):
        self.backend = backend
        self.cache = cache if cache is not None else TTLCache(ttl=ttl)
        self.fallback_images = tuple(fallback_images)

    def _fetch(self) -> list[StoredPhotoRecord]:
        records = [r for r in self.backend.list() if is_image_name(r.name)]
        records.sort(key=_sort_key, reverse=True)
        return records

    def _fallback(self) -> list[StoredPhotoRecord]:
        return [StoredPhotoRecord(name=url.rsplit("/", 1)[-1], url=url) for url in self.fallback_images]

    def photos(self) -> list[StoredPhotoRecord]:
        """Image records, newest first."""
        try:
            return list(self.cache.get_or_set(PHOTOS_KEY, self._fetch))
        except StorageError as e:
            logger.warning("failed to list photos, serving {} fallback image(s): {}", len(self.fallback_images), e)
            return self._fallback()

    def photo_ids(self) -> list[str]:
        ids = {extract_from_stored_name(r.name) for r in self.photos()}
        ids.discard(None)
        return sorted(ids)

    def invalidate(self) -> None:
        self.cache.invalidate(PHOTOS_KEY)

    def delete_photo(self, name: str) -> None:
        """Delete one photo.

        Raises:
            StorageError: when the backend refuses
        """
        try:
            self.backend.remove(name)
        finally:
            self.invalidate()
        logger.info("deleted {}", name)

    def delete_all(self) -> int:
        """Delete every listed photo and return how many were removed.

        Without a bulk ``remove_many`` the photos are removed one by one, and a
        failure on one name does not stop the rest.

        Raises:
            StorageError: when the listing or the bulk removal fails
            PartialDeleteError: when some one-by-one removals failed
        """
        failed: dict[str, StorageError] = {}
        try:
            names = [r.name for r in self.backend.list()]
            if not names:
                return 0
            remove_many = getattr(self.backend, "remove_many", None)
            if remove_many is not None:
                count = remove_many(names)
            else:
                count = 0
                for name in names:
                    try:
                        self.backend.remove(name)
                    except StorageError as e:
                        logger.warning("could not delete {}: {}", name, e)
                        failed[name] = e
                        continue
                    count += 1
        finally:
            self.invalidate()
        logger.info("deleted {} photo(s)", count)
        if failed:
            raise PartialDeleteError(count, failed)
        return count
