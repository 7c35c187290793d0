"""Supabase Storage backend, spoken over the storage REST API with a
service-role key (no SDK)."""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

import requests
from loguru import logger

from photoshelf.backends.base import StorageError, decode_json, error_kind_for_status, parse_timestamp
from photoshelf.lib.filetype import ALLOWED_MEDIA_TYPES, MAX_FILE_SIZE, is_image_name
from photoshelf.models.domain import StoredPhotoRecord

PLACEHOLDER = ".emptyFolderPlaceholder"


class SupabaseBackend:
    def __init__(
        self,
        url: str,
        service_key: str,
        bucket: str = "portfolio-photos",
        prefix: str = "photos",
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        page_size: int = 100,
        allowed_types=ALLOWED_MEDIA_TYPES,
        max_file_size: int = MAX_FILE_SIZE,
    ):
        if not url or not service_key:
            raise ValueError("Missing Supabase configuration: url and service_key are required")
        self.url = url.rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.page_size = page_size
        self.allowed_types = tuple(allowed_types)
        self.max_file_size = max_file_size

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.service_key}", "apikey": self.service_key}

    def _object_path(self, name: str) -> str:
        name = name.lstrip("/")
        if self.prefix and not name.startswith(f"{self.prefix}/"):
            return f"{self.prefix}/{name}"
        return name

    def public_url(self, path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{self.bucket}/{path}"

    def _request(self, method: str, endpoint: str, **kwargs) -> requests.Response:
        headers = {**self._headers, **kwargs.pop("headers", {})}
        try:
            response = self.session.request(method, f"{self.url}{endpoint}", headers=headers,
                                            timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise StorageError(f"Supabase unreachable: {e}", kind="unavailable") from e
        if not response.ok:
            raise self._error_for(response)
        return response

    def _error_for(self, response: requests.Response) -> StorageError:
        text = response.text or ""
        kind = error_kind_for_status(response.status_code, text)
        if response.status_code == 404:
            message = f"Storage bucket not found: create '{self.bucket}' in the Supabase dashboard ({text})"
        elif kind == "permission":
            message = f"Permission denied: check RLS policies or use the service role key ({text})"
        else:
            message = f"HTTP {response.status_code}: {text}"
        return StorageError(message, kind=kind, status=response.status_code)

    def list(self) -> Iterable[StoredPhotoRecord]:
        """Page through the bucket prefix, newest first."""
        offset = 0
        while True:
            response = self._request(
                "POST",
                f"/storage/v1/object/list/{self.bucket}",
                json={
                    "prefix": f"{self.prefix}/" if self.prefix else "",
                    "limit": self.page_size,
                    "offset": offset,
                    "sortBy": {"column": "created_at", "order": "desc"},
                },
            )
            items = decode_json(response, [])
            for item in items:
                name = item.get("name") or ""
                if name == PLACEHOLDER or not is_image_name(name):
                    continue
                path = self._object_path(name)
                metadata = item.get("metadata") or {}
                yield StoredPhotoRecord(
                    name=path,
                    url=self.public_url(path),
                    uploaded_at=parse_timestamp(item.get("created_at")),
                    size=metadata.get("size"),
                    content_type=metadata.get("mimetype"),
                )
            if len(items) < self.page_size:
                return
            offset += self.page_size

    def put(self, name: str, data: bytes, content_type: str) -> StoredPhotoRecord:
        path = self._object_path(name)
        self._request(
            "POST",
            f"/storage/v1/object/{self.bucket}/{path}",
            data=data,
            headers={"Content-Type": content_type, "x-upsert": "false", "cache-control": "3600"},
        )
        logger.debug("uploaded {} to bucket {}", path, self.bucket)
        return StoredPhotoRecord(name=path, url=self.public_url(path), uploaded_at=datetime.now(),
                                 size=len(data), content_type=content_type)

    def remove(self, name: str) -> None:
        self._request("DELETE", f"/storage/v1/object/{self.bucket}/{self._object_path(name)}")

    def remove_many(self, names: list[str]) -> int:
        """Delete several objects in one request; returns how many were sent."""
        if not names:
            return 0
        self._request("DELETE", f"/storage/v1/object/{self.bucket}",
                      json={"prefixes": [self._object_path(n) for n in names]})
        return len(names)

    def setup(self) -> str:
        """Create the public bucket with the upload allow-list if it is missing."""
        buckets = decode_json(self._request("GET", "/storage/v1/bucket"), [])
        if any(b.get("name") == self.bucket for b in buckets):
            return "Storage already configured"
        self._request(
            "POST",
            "/storage/v1/bucket",
            json={
                "id": self.bucket,
                "name": self.bucket,
                "public": True,
                "allowed_mime_types": list(self.allowed_types),
                "file_size_limit": self.max_file_size,
            },
        )
        logger.info("created bucket {}", self.bucket)
        return "Storage setup complete"

    def health_check(self) -> bool:
        try:
            self._request("GET", f"/storage/v1/bucket/{self.bucket}")
        except StorageError:
            return False
        return True
