import pytest

from fakes import FakeResponse, FakeSession, connection_error
from photoshelf.backends.base import StorageError, error_kind_for_status
from photoshelf.backends.factory import create_backend
from photoshelf.backends.filebrowser import FilebrowserBackend
from photoshelf.backends.local import LocalBackend
from photoshelf.backends.supabase import SupabaseBackend
from photoshelf.backends.vercel_blob import VercelBlobBackend
from photoshelf.lib.cache import TTLCache
from photoshelf.lib.config import Settings

SUPABASE = "https://proj.supabase.co"


@pytest.mark.parametrize("status,body,kind", [
    (404, "", "not_found"),
    (403, "new row violates row-level security policy", "permission"),
    (409, "Duplicate", "conflict"),
    (413, "Payload too large", "too_large"),
    (400, "Invalid key: does not match pattern", "invalid_name"),
    (400, "The resource already exists", "conflict"),
    (402, "", "quota"),
    (503, "", "unavailable"),
    (418, "", "unknown"),
])
def test_error_kind_for_status(status, body, kind):
    assert error_kind_for_status(status, body) == kind


def supabase(*responses, page_size=100):
    session = FakeSession(*responses)
    return SupabaseBackend(SUPABASE, "service-key", session=session, page_size=page_size), session


def test_supabase_requires_credentials():
    with pytest.raises(ValueError):
        SupabaseBackend("", "key")


def test_supabase_list_pages_and_filters():
    backend, session = supabase(
        FakeResponse(json_data=[
            {"name": "img_2_IMG_2.jpg", "created_at": "2024-05-02T10:00:00Z", "metadata": {"size": 10}},
            {"name": ".emptyFolderPlaceholder"},
        ]),
        FakeResponse(json_data=[{"name": "img_1_IMG_1.webp", "created_at": "2024-05-01T10:00:00Z"}]),
        page_size=2,
    )
    records = list(backend.list())

    assert [r.name for r in records] == ["photos/img_2_IMG_2.jpg", "photos/img_1_IMG_1.webp"]
    assert records[0].url == f"{SUPABASE}/storage/v1/object/public/portfolio-photos/photos/img_2_IMG_2.jpg"
    assert records[0].size == 10
    assert records[0].uploaded_at.year == 2024
    method, url, kwargs = session.calls[1]
    assert (method, url) == ("POST", f"{SUPABASE}/storage/v1/object/list/portfolio-photos")
    assert kwargs["json"]["offset"] == 2
    assert kwargs["headers"]["Authorization"] == "Bearer service-key"


def test_supabase_put_never_upserts():
    backend, session = supabase(FakeResponse(json_data={"Key": "x"}))
    record = backend.put("img_1_IMG_1.jpg", b"data", "image/jpeg")

    method, url, kwargs = session.calls[0]
    assert url == f"{SUPABASE}/storage/v1/object/portfolio-photos/photos/img_1_IMG_1.jpg"
    assert kwargs["headers"]["x-upsert"] == "false"
    assert kwargs["data"] == b"data"
    assert record.name == "photos/img_1_IMG_1.jpg"


@pytest.mark.parametrize("status,text,kind", [
    (409, "The resource already exists", "conflict"),
    (403, "row-level security", "permission"),
    (404, "Bucket not found", "not_found"),
])
def test_supabase_put_errors(status, text, kind):
    backend, _ = supabase(FakeResponse(status, text=text))
    with pytest.raises(StorageError) as exc:
        backend.put("img_1_IMG_1.jpg", b"data", "image/jpeg")
    assert exc.value.kind == kind
    assert exc.value.status == status
    assert text in str(exc.value)


def test_supabase_transport_error_is_unavailable():
    backend, _ = supabase(connection_error())
    with pytest.raises(StorageError) as exc:
        list(backend.list())
    assert exc.value.kind == "unavailable"


def test_supabase_setup_creates_bucket():
    backend, session = supabase(FakeResponse(json_data=[{"name": "other"}]), FakeResponse(json_data={}))
    assert backend.setup() == "Storage setup complete"
    body = session.calls[1][2]["json"]
    assert body["name"] == "portfolio-photos"
    assert body["public"] is True
    assert "image/webp" in body["allowed_mime_types"]


def test_supabase_remove_many():
    backend, session = supabase(FakeResponse(json_data=[]))
    assert backend.remove_many(["img_1_A.jpg", "photos/img_2_B.jpg"]) == 2
    assert session.calls[0][2]["json"] == {"prefixes": ["photos/img_1_A.jpg", "photos/img_2_B.jpg"]}


def blob(pathname, uploaded="2024-05-01T00:00:00.000Z"):
    return {"pathname": pathname, "url": f"https://abc.public.blob.vercel-storage.com/{pathname}",
            "uploadedAt": uploaded, "size": 3}


def test_vercel_list_follows_cursor():
    session = FakeSession(
        FakeResponse(json_data={"blobs": [blob("photos/img_1_A.jpg"), blob("photos/readme.md")],
                                "cursor": "c1", "hasMore": True}),
        FakeResponse(json_data={"blobs": [blob("photos/img_2_B.png")], "hasMore": False}),
    )
    backend = VercelBlobBackend("token", session=session)
    assert [r.name for r in backend.list()] == ["photos/img_1_A.jpg", "photos/img_2_B.png"]
    assert session.calls[1][2]["params"] == {"prefix": "photos/", "limit": 1000, "cursor": "c1"}


def test_vercel_put_disables_random_suffix():
    session = FakeSession(FakeResponse(json_data={"pathname": "photos/img_1_A.jpg",
                                                  "url": "https://blob.test/photos/img_1_A.jpg"}))
    backend = VercelBlobBackend("token", session=session)
    record = backend.put("img_1_A.jpg", b"abc", "image/jpeg")
    method, url, kwargs = session.calls[0]
    assert method == "PUT"
    assert url.endswith("/photos/img_1_A.jpg")
    assert kwargs["headers"]["x-add-random-suffix"] == "0"
    assert record.url == "https://blob.test/photos/img_1_A.jpg"


def test_vercel_remove_unknown_blob_is_not_found():
    session = FakeSession(FakeResponse(json_data={"blobs": [], "hasMore": False}))
    backend = VercelBlobBackend("token", session=session)
    with pytest.raises(StorageError) as exc:
        backend.remove("img_9_Z.jpg")
    assert exc.value.kind == "not_found"


def test_vercel_remove_deletes_by_url():
    session = FakeSession(
        FakeResponse(json_data={"blobs": [blob("photos/img_1_A.jpg")], "hasMore": False}),
        FakeResponse(json_data={}),
    )
    VercelBlobBackend("token", session=session).remove("img_1_A.jpg")
    method, url, kwargs = session.calls[1]
    assert url.endswith("/delete")
    assert kwargs["json"] == {"urls": ["https://abc.public.blob.vercel-storage.com/photos/img_1_A.jpg"]}


def test_filebrowser_logs_in_once_and_caches_token():
    session = FakeSession(
        FakeResponse(text="tok1"),
        FakeResponse(json_data={"items": [
            {"name": "img_1_A.jpg", "path": "/my_data/portfolio_pics/img_1_A.jpg",
             "modified": "2024-05-01T10:00:00Z", "size": 5},
            {"name": "sub", "isDir": True},
        ]}),
        FakeResponse(json_data={}),
    )
    backend = FilebrowserBackend("http://fb.local", username="u", password="p", session=session)
    records = backend.list()
    backend.put("img_2_B.jpg", b"bytes", "image/jpeg")

    assert [r.name for r in records] == ["img_1_A.jpg"]
    assert records[0].url == "http://fb.local/api/raw/my_data/portfolio_pics/img_1_A.jpg?auth=tok1"
    assert [c[1] for c in session.calls] == [
        "http://fb.local/api/login",
        "http://fb.local/api/resources/my_data/portfolio_pics/",
        "http://fb.local/api/resources/my_data/portfolio_pics/img_2_B.jpg",
    ]
    assert session.calls[2][2]["params"] == {"override": "false"}


def test_filebrowser_relogs_in_after_expired_token():
    session = FakeSession(
        FakeResponse(401, text="unauthorized"),
        FakeResponse(text="fresh"),
        FakeResponse(json_data={}),
    )
    cache = TTLCache(ttl=60)
    cache.set("token", "stale")
    backend = FilebrowserBackend("http://fb.local", username="u", password="p", session=session, token_cache=cache)
    backend.remove("img_1_A.jpg")

    assert session.calls[0][2]["headers"]["X-Auth"] == "stale"
    assert session.calls[1][1] == "http://fb.local/api/login"
    assert session.calls[2][2]["headers"]["X-Auth"] == "fresh"


def test_filebrowser_without_credentials_is_permission_error():
    backend = FilebrowserBackend("http://fb.local", session=FakeSession())
    with pytest.raises(StorageError) as exc:
        backend.list()
    assert exc.value.kind == "permission"


def test_filebrowser_setup_creates_directory():
    session = FakeSession(FakeResponse(404, text="404 Not Found"), FakeResponse(json_data={}))
    backend = FilebrowserBackend("http://fb.local", token="preset", session=session)
    assert backend.setup() == "Created folder /my_data/portfolio_pics"
    assert session.calls[1][0] == "POST"


def malformed():
    return FakeResponse(invalid_json=True, text="<html>502 Bad Gateway</html>")


@pytest.mark.parametrize("make_backend", [
    lambda session: SupabaseBackend(SUPABASE, "service-key", session=session),
    lambda session: VercelBlobBackend("token", session=session),
    lambda session: FilebrowserBackend("http://fb.local", token="preset", session=session),
])
def test_malformed_listing_is_unavailable(make_backend):
    backend = make_backend(FakeSession(malformed()))
    with pytest.raises(StorageError) as exc:
        list(backend.list())
    assert exc.value.kind == "unavailable"
    assert "Malformed response" in str(exc.value)


def test_factory_builds_configured_backend(tmp_path):
    local = create_backend(Settings(local={"root": str(tmp_path)}))
    assert isinstance(local, LocalBackend)

    remote = create_backend(Settings(backend="supabase", supabase={"url": SUPABASE, "service_key": "k"}),
                            session=FakeSession())
    assert isinstance(remote, SupabaseBackend)

    with pytest.raises(ValueError):
        create_backend(Settings(backend="vercel-blob"))
