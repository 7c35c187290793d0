"""Self-hosted File Browser backend.

Authenticates with username/password (``POST /api/login``) unless a
pre-issued token is configured. Login tokens are kept in a ``TTLCache`` for
23 hours since File Browser issues them for 24.
"""
from __future__ import annotations

from typing import Iterable, Optional
from urllib.parse import quote

import requests
from loguru import logger

from photoshelf.backends.base import StorageError, decode_json, error_kind_for_status, parse_timestamp
from photoshelf.lib.cache import TTLCache
from photoshelf.lib.filetype import is_image_name
from photoshelf.models.domain import StoredPhotoRecord

TOKEN_TTL = 23 * 60 * 60


class FilebrowserBackend:
    def __init__(
        self,
        url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        token: Optional[str] = None,
        directory: str = "/my_data/portfolio_pics",
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        token_cache: Optional[TTLCache] = None,
    ):
        if not url:
            raise ValueError("Missing File Browser configuration: url is required")
        self.url = url.rstrip("/")
        self.username = username
        self.password = password
        self.token = token
        self.directory = "/" + directory.strip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.token_cache = token_cache or TTLCache(ttl=TOKEN_TTL)

    def _send(self, method: str, endpoint: str, **kwargs) -> requests.Response:
        try:
            response = self.session.request(method, f"{self.url}{endpoint}", timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise StorageError(f"File Browser unreachable: {e}", kind="unavailable") from e
        if not response.ok:
            text = response.text or ""
            raise StorageError(f"HTTP {response.status_code}: {text}",
                               kind=error_kind_for_status(response.status_code, text),
                               status=response.status_code)
        return response

    def authenticate(self) -> str:
        """Return an auth token, logging in when no valid one is cached."""
        if self.token:
            return self.token
        cached = self.token_cache.get("token")
        if cached:
            return cached
        if not self.username or not self.password:
            raise StorageError("File Browser credentials not configured", kind="permission")

        response = self._send(
            "POST",
            "/api/login",
            json={"username": self.username, "password": self.password, "recaptcha": ""},
        )
        token = response.text.strip()
        self.token_cache.set("token", token)
        logger.debug("authenticated with File Browser as {}", self.username)
        return token

    def _request(self, method: str, endpoint: str, **kwargs) -> requests.Response:
        headers = {"X-Auth": self.authenticate(), **kwargs.pop("headers", {})}
        try:
            return self._send(method, endpoint, headers=headers, **kwargs)
        except StorageError as e:
            if e.status == 401 and not self.token:
                # expired login token: forget it and try once more
                self.token_cache.invalidate("token")
                headers = {**headers, "X-Auth": self.authenticate()}
                return self._send(method, endpoint, headers=headers, **kwargs)
            raise

    def _path(self, name: str) -> str:
        name = name.lstrip("/")
        prefix = self.directory.lstrip("/") + "/"
        if name.startswith(prefix):
            name = name[len(prefix):]
        return f"{self.directory}/{name}"

    def file_url(self, path: str) -> str:
        return f"{self.url}/api/raw{quote(path)}?auth={self.authenticate()}"

    def list(self) -> Iterable[StoredPhotoRecord]:
        data = decode_json(self._request("GET", f"/api/resources{quote(self.directory)}/"), {})
        records = []
        for item in data.get("items") or []:
            if item.get("isDir") or not is_image_name(item.get("name", "")):
                continue
            path = item.get("path") or self._path(item["name"])
            records.append(StoredPhotoRecord(
                name=item["name"],
                url=self.file_url(path),
                uploaded_at=parse_timestamp(item.get("modified")),
                size=item.get("size"),
            ))
        return records

    def put(self, name: str, data: bytes, content_type: str) -> StoredPhotoRecord:
        path = self._path(name)
        self._request(
            "POST",
            f"/api/resources{quote(path)}",
            params={"override": "false"},
            data=data,
            headers={"Content-Type": content_type},
        )
        logger.debug("uploaded {} to File Browser", path)
        return StoredPhotoRecord(name=name.rsplit("/", 1)[-1], url=self.file_url(path),
                                 size=len(data), content_type=content_type)

    def remove(self, name: str) -> None:
        self._request("DELETE", f"/api/resources{quote(self._path(name))}")

    def setup(self) -> str:
        try:
            self._request("GET", f"/api/resources{quote(self.directory)}/")
            return "Storage already configured"
        except StorageError as e:
            if e.kind != "not_found":
                raise
        # a trailing slash asks File Browser for a directory
        self._request("POST", f"/api/resources{quote(self.directory)}/")
        return f"Created folder {self.directory}"

    def health_check(self) -> bool:
        try:
            self._send("GET", "/health")
        except StorageError:
            return False
        return True
