"""Build the configured storage backend from ``Settings``."""
from __future__ import annotations

from typing import Optional

import requests

from photoshelf.lib.config import Settings


def create_backend(settings: Settings, session: Optional[requests.Session] = None):
    """Instantiate the backend named by ``settings.backend``.

    ``session`` is shared by the HTTP backends; it is ignored by the local one.

    Raises:
        ValueError: for an unknown backend or missing credentials
    """
    opts = settings.backend_options()

    if settings.backend == "local":
        from photoshelf.backends.local import LocalBackend
        return LocalBackend(root=opts.get("root", "public/photos"), base_url=opts.get("base_url", "/photos"))

    if settings.backend == "supabase":
        from photoshelf.backends.supabase import SupabaseBackend
        return SupabaseBackend(
            url=opts.get("url", ""),
            service_key=opts.get("service_key", ""),
            bucket=opts.get("bucket", "portfolio-photos"),
            prefix=opts.get("prefix", "photos"),
            session=session,
            timeout=float(opts.get("timeout", 30)),
            allowed_types=settings.allowed_types,
            max_file_size=settings.max_file_size,
        )

    if settings.backend == "vercel-blob":
        from photoshelf.backends.vercel_blob import VercelBlobBackend
        return VercelBlobBackend(
            token=opts.get("token", ""),
            prefix=opts.get("prefix", "photos/"),
            session=session,
            timeout=float(opts.get("timeout", 30)),
        )

    if settings.backend == "filebrowser":
        from photoshelf.backends.filebrowser import FilebrowserBackend
        return FilebrowserBackend(
            url=opts.get("url", ""),
            username=opts.get("username"),
            password=opts.get("password"),
            token=opts.get("token"),
            directory=opts.get("directory", "/my_data/portfolio_pics"),
            session=session,
            timeout=float(opts.get("timeout", 30)),
        )

    raise ValueError(f"Unknown backend: {settings.backend!r}")
