"""Local filesystem storage backend.

Bytes live directly under ``root``; a SQLite index (via SQLAlchemy) records
size, type, checksum and upload time for each file this backend wrote. Files
dropped into the folder by hand are still listed, using filesystem metadata.
"""
from __future__ import annotations

import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError

from photoshelf.backends.base import StorageError
from photoshelf.lib.database import get_engine, get_sessionmaker, init_db
from photoshelf.lib.filetype import is_image_name
from photoshelf.lib.hashing import md5_bytes
from photoshelf.lib.identity import extract_from_stored_name
from photoshelf.models.domain import StoredPhotoRecord
from photoshelf.services.repository import Repository

INDEX_NAME = ".photoshelf.sqlite3"


class LocalBackend:
    """Store photos in a directory, served from ``base_url``.

    Args:
        root: Directory holding the photos (created by ``setup``/``put``)
        base_url: Public URL prefix the directory is served under
        session_factory: SQLAlchemy sessionmaker; defaults to a SQLite index
                         file inside ``root``
    """

    def __init__(self, root: str | Path, base_url: str = "/photos", session_factory=None):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self._session_factory = session_factory
        # one writer at a time for the index; sessions are not thread-safe
        self._lock = threading.Lock()

    def _session(self):
        # the default index is created with the folder, on first use
        if self._session_factory is None:
            self.root.mkdir(parents=True, exist_ok=True)
            engine = get_engine(str(self.root / INDEX_NAME))
            init_db(engine)
            self._session_factory = get_sessionmaker(engine)
        return self._session_factory()

    def _url_for(self, name: str) -> str:
        return f"{self.base_url}/{name}"

    def _path_for(self, name: str) -> Path:
        p = (self.root / name).resolve()
        if p.parent != self.root.resolve():
            raise StorageError(f"Invalid storage name: {name!r}", kind="invalid_name")
        return p

    def list(self) -> Iterable[StoredPhotoRecord]:
        if not self.root.exists():
            return []
        with self._lock:
            session = self._session()
            try:
                indexed = {p.name: p for p in Repository(session).list_photos()}
            finally:
                session.close()

        records = []
        for p in sorted(self.root.iterdir()):
            if not p.is_file() or not is_image_name(p.name):
                continue
            row = indexed.get(p.name)
            if row is not None:
                records.append(StoredPhotoRecord(
                    name=p.name,
                    url=self._url_for(p.name),
                    uploaded_at=row.uploaded_at,
                    size=row.size,
                    content_type=row.content_type,
                ))
            else:
                stat = p.stat()
                records.append(StoredPhotoRecord(
                    name=p.name,
                    url=self._url_for(p.name),
                    uploaded_at=datetime.fromtimestamp(stat.st_mtime),
                    size=stat.st_size,
                ))
        return records

    def put(self, name: str, data: bytes, content_type: str) -> StoredPhotoRecord:
        target = self._path_for(name)
        self.root.mkdir(parents=True, exist_ok=True)
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=f".{target.name}.", suffix=".part")
        except OSError as e:
            raise StorageError(f"Cannot create {name}: {e}", kind="permission") from e
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            # link publishes the complete file in one step and never replaces an existing one
            os.link(tmp, target)
        except FileExistsError:
            raise StorageError(f"The resource already exists: {name}", kind="conflict", status=409) from None
        except OSError as e:
            raise StorageError(f"Failed to write {name}: {e}", kind="unavailable") from e
        finally:
            tmp.unlink(missing_ok=True)

        with self._lock:
            session = self._session()
            try:
                row = Repository(session).create_photo(
                    name=name,
                    identifier=extract_from_stored_name(name),
                    size=len(data),
                    content_type=content_type,
                    md5_hash=md5_bytes(data),
                )
                uploaded_at: Optional[datetime] = row.uploaded_at
            except IntegrityError as e:
                target.unlink(missing_ok=True)
                raise StorageError(f"The resource already exists: {name}", kind="conflict", status=409) from e
            finally:
                session.close()

        logger.debug("stored {} ({} bytes)", name, len(data))
        return StoredPhotoRecord(name=name, url=self._url_for(name), uploaded_at=uploaded_at,
                                 size=len(data), content_type=content_type)

    def remove(self, name: str) -> None:
        target = self._path_for(name)
        with self._lock:
            session = self._session()
            try:
                indexed = Repository(session).delete_photo(name)
            finally:
                session.close()
        try:
            target.unlink()
        except FileNotFoundError:
            if not indexed:
                raise StorageError(f"Object not found: {name}", kind="not_found", status=404) from None
        except OSError as e:
            raise StorageError(f"Failed to delete {name}: {e}", kind="permission") from e

    def setup(self) -> str:
        existed = self.root.exists()
        self.root.mkdir(parents=True, exist_ok=True)
        return "Storage already configured" if existed else f"Created photo folder {self.root}"

    def health_check(self) -> bool:
        return self.root.is_dir() and os.access(self.root, os.W_OK)
