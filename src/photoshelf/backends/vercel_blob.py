"""Vercel Blob backend over the blob REST API, authenticated with a
read-write token."""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

import requests
from loguru import logger

from photoshelf.backends.base import StorageError, decode_json, error_kind_for_status, parse_timestamp
from photoshelf.lib.filetype import is_image_name
from photoshelf.models.domain import StoredPhotoRecord

API_URL = "https://blob.vercel-storage.com"
API_VERSION = "7"


class VercelBlobBackend:
    def __init__(
        self,
        token: str,
        prefix: str = "photos/",
        api_url: str = API_URL,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        page_size: int = 1000,
    ):
        if not token:
            raise ValueError("Missing Vercel Blob configuration: BLOB_READ_WRITE_TOKEN is required")
        self.token = token
        self.prefix = prefix.lstrip("/")
        self.api_url = api_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.page_size = page_size

    def _pathname(self, name: str) -> str:
        name = name.lstrip("/")
        return name if name.startswith(self.prefix) else f"{self.prefix}{name}"

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        headers = {
            "authorization": f"Bearer {self.token}",
            "x-api-version": API_VERSION,
            **kwargs.pop("headers", {}),
        }
        try:
            response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise StorageError(f"Vercel Blob unreachable: {e}", kind="unavailable") from e
        if not response.ok:
            text = response.text or ""
            raise StorageError(f"HTTP {response.status_code}: {text}",
                               kind=error_kind_for_status(response.status_code, text),
                               status=response.status_code)
        return response

    def _record(self, blob: dict) -> StoredPhotoRecord:
        return StoredPhotoRecord(
            name=blob["pathname"],
            url=blob["url"],
            uploaded_at=parse_timestamp(blob.get("uploadedAt")),
            size=blob.get("size"),
            content_type=blob.get("contentType"),
        )

    def _blobs(self, prefix: str) -> Iterable[dict]:
        cursor = None
        while True:
            params = {"prefix": prefix, "limit": self.page_size}
            if cursor:
                params["cursor"] = cursor
            data = decode_json(self._request("GET", self.api_url, params=params), {})
            yield from data.get("blobs") or []
            cursor = data.get("cursor")
            if not data.get("hasMore") or not cursor:
                return

    def list(self) -> Iterable[StoredPhotoRecord]:
        for blob in self._blobs(self.prefix):
            if is_image_name(blob.get("pathname", "")):
                yield self._record(blob)

    def put(self, name: str, data: bytes, content_type: str) -> StoredPhotoRecord:
        pathname = self._pathname(name)
        response = self._request(
            "PUT",
            f"{self.api_url}/{pathname}",
            data=data,
            headers={
                "x-content-type": content_type,
                "x-add-random-suffix": "0",
                "x-allow-overwrite": "0",
                "x-cache-control-max-age": "3600",
            },
        )
        blob = decode_json(response, {})
        logger.debug("uploaded blob {}", pathname)
        return StoredPhotoRecord(
            name=blob.get("pathname", pathname),
            url=blob.get("url", f"{self.api_url}/{pathname}"),
            uploaded_at=datetime.now(),
            size=len(data),
            content_type=blob.get("contentType", content_type),
        )

    def _urls_for(self, names: list[str]) -> list[str]:
        wanted = {self._pathname(n) for n in names}
        return [b["url"] for b in self._blobs(self.prefix) if b.get("pathname") in wanted]

    def remove(self, name: str) -> None:
        urls = self._urls_for([name])
        if not urls:
            raise StorageError(f"Blob not found: {self._pathname(name)}", kind="not_found", status=404)
        self._request("POST", f"{self.api_url}/delete", json={"urls": urls})

    def remove_many(self, names: list[str]) -> int:
        urls = self._urls_for(names)
        if urls:
            self._request("POST", f"{self.api_url}/delete", json={"urls": urls})
        return len(urls)

    def setup(self) -> str:
        # blob stores are created from the Vercel dashboard; only check access
        next(iter(self._blobs(self.prefix)), None)
        return "Blob store reachable"

    def health_check(self) -> bool:
        try:
            self.setup()
        except StorageError:
            return False
        return True
