from types import SimpleNamespace

from fakes import FakeBackend
from photoshelf.backends.local import LocalBackend
from photoshelf.backends.base import StorageError
from photoshelf.cli import check, compress, delete, delete_all, ids, list_photos, main, setup, upload
from photoshelf.lib.config import Settings


def write_photos(folder, *names):
    folder.mkdir(parents=True, exist_ok=True)
    for name in names:
        (folder / name).write_bytes(b"\xff\xd8" + name.encode())
    return folder


def upload_args(paths, store, **overrides):
    values = dict(paths=[str(p) for p in paths], store=store, settings=Settings(),
                  recursive=False, retry_failed=0, group_size=None, policy=None, backend=None)
    values.update(overrides)
    return SimpleNamespace(**values)


def test_upload_prints_three_buckets(tmp_path, capsys):
    src = write_photos(tmp_path / "in", "IMG_1.jpg", "IMG_2.jpg", "notes.txt")
    backend = FakeBackend(existing=["img_1_IMG_2.jpg"], reject=["IMG_3"])
    (src / "IMG_3.png").write_bytes(b"png")

    rc = upload(upload_args([src], backend))
    out = capsys.readouterr().out

    assert rc == 1
    assert "Succeeded: 1" in out
    assert "IMG_1.jpg -> https://cdn.test/img_" in out
    assert "Duplicate: 1" in out
    assert "Failed: 1" in out
    assert "IMG_3.png: The object exceeded the maximum allowed size" in out
    assert "notes.txt" not in out


def test_upload_to_local_folder_then_rerun_is_all_duplicates(tmp_path, capsys):
    src = write_photos(tmp_path / "in", "DSC_0001.jpg")
    write_photos(tmp_path / "in" / "nested", "DSC_0001.jpg", "PXL_20240101_0001.jpg")
    backend = LocalBackend(tmp_path / "public")

    assert upload(upload_args([src], backend, recursive=True)) == 0
    out = capsys.readouterr().out
    assert "Succeeded: 2" in out
    assert "Duplicate: 1" in out

    assert upload(upload_args([src], backend, recursive=True)) == 0
    assert "Succeeded: 0" in capsys.readouterr().out


def test_upload_retry_failed(tmp_path, capsys):
    src = write_photos(tmp_path / "in", "IMG_1.jpg", "IMG_2.jpg")
    backend = FakeBackend(fail_once=["IMG_2"])

    rc = upload(upload_args([src / "IMG_1.jpg", src / "IMG_2.jpg"], backend, retry_failed=2))
    out = capsys.readouterr().out

    assert rc == 0
    assert "Retrying 1 failed file(s) (attempt 1/2)" in out
    assert "Succeeded: 2" in out
    assert "Failed: 0" in out


def test_upload_with_content_hash_policy(tmp_path, capsys):
    src = tmp_path / "in"
    src.mkdir()
    (src / "a.jpg").write_bytes(b"same")
    (src / "b.jpg").write_bytes(b"same")
    backend = FakeBackend()

    assert upload(upload_args([src], backend, policy="content-hash")) == 0
    out = capsys.readouterr().out
    assert "Succeeded: 1" in out
    assert "Duplicate: 1" in out


def test_upload_missing_file_is_reported_failed(tmp_path, capsys):
    src = write_photos(tmp_path / "in", "IMG_2.jpg")
    backend = FakeBackend()

    rc = upload(upload_args([tmp_path / "IMG_1.jpg", src / "IMG_2.jpg"], backend))
    out = capsys.readouterr().out

    assert rc == 1
    assert "Succeeded: 1" in out
    assert "Failed: 1" in out
    assert "IMG_1.jpg: Cannot read file: No such file or directory" in out
    assert len(backend.put_calls) == 1


def test_upload_only_missing_files_skips_backend(tmp_path, capsys):
    backend = FakeBackend()

    assert upload(upload_args([tmp_path / "IMG_1.jpg"], backend)) == 1
    assert "Failed: 1" in capsys.readouterr().out
    assert backend.list_calls == 0
    assert backend.put_calls == []


def test_upload_nothing_to_do(tmp_path, capsys):
    (tmp_path / "readme.txt").write_text("x")
    assert upload(upload_args([tmp_path], FakeBackend())) == 0
    assert "No image files to upload" in capsys.readouterr().out


def test_list_and_ids(capsys):
    backend = FakeBackend(existing=["img_1_IMG_1.jpg", "holiday.jpg"])
    args = SimpleNamespace(store=backend, settings=Settings())

    assert list_photos(args) == 0
    out = capsys.readouterr().out
    assert "img_1_IMG_1.jpg\t2024-01-01T12:00:00\thttps://cdn.test/img_1_IMG_1.jpg" in out

    assert ids(args) == 0
    assert capsys.readouterr().out.split() == ["IMG_1"]


def test_delete_commands(capsys):
    backend = FakeBackend(existing=["img_1_A.jpg", "img_2_B.jpg"])
    args = SimpleNamespace(store=backend, settings=Settings(), name="img_1_A.jpg", yes=False)

    assert delete(args) == 0
    assert delete(args) == 1
    assert "could not delete img_1_A.jpg" in capsys.readouterr().out

    assert delete_all(args) == 1
    args.yes = True
    assert delete_all(args) == 0
    assert "Deleted 1 photo(s)" in capsys.readouterr().out
    assert backend.objects == {}


def test_delete_all_reports_names_left_behind(capsys):
    class StubbornBackend(FakeBackend):
        def remove(self, name):
            if name == "img_1_A.jpg":
                raise StorageError("locked", kind="permission", status=403)
            super().remove(name)

    backend = StubbornBackend(existing=["img_1_A.jpg", "img_2_B.jpg"])
    rc = delete_all(SimpleNamespace(store=backend, settings=Settings(), yes=True))
    out = capsys.readouterr().out

    assert rc == 1
    assert "Deleted 1 photo(s)" in out
    assert "  ! img_1_A.jpg: locked" in out
    assert list(backend.objects) == ["img_1_A.jpg"]


def test_check_reports_backend_health(tmp_path, capsys):
    args = SimpleNamespace(store=LocalBackend(tmp_path / "photos"), settings=Settings())
    assert check(args) == 1
    assert "local storage is not reachable" in capsys.readouterr().out

    assert setup(args) == 0
    assert check(args) == 0
    assert "local storage is reachable" in capsys.readouterr().out


def test_setup_reports_backend_status(tmp_path, capsys):
    args = SimpleNamespace(store=LocalBackend(tmp_path / "photos"), settings=Settings())
    assert setup(args) == 0
    assert "Created photo folder" in capsys.readouterr().out


def test_main_uses_config_file(tmp_path, capsys, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("PHOTOSHELF_BACKEND", raising=False)
    (tmp_path / "photoshelf.json").write_text('{"local": {"root": "site/photos"}}', encoding="utf-8")

    assert main(["setup"]) == 0
    assert (tmp_path / "site" / "photos").is_dir()
    assert main(["list"]) == 0
    assert "No photos found" in capsys.readouterr().out


def test_main_reports_configuration_errors(tmp_path, capsys, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for var in ("PHOTOSHELF_BACKEND", "SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY"):
        monkeypatch.delenv(var, raising=False)
    assert main(["--backend", "supabase", "ids"]) == 1
    assert "Missing Supabase configuration" in capsys.readouterr().out


def test_main_without_command_prints_help(capsys):
    assert main([]) == 1
    assert "usage: photoshelf" in capsys.readouterr().out


def test_compress_command(tmp_path, capsys):
    from PIL import Image

    Image.new("RGB", (40, 20), (200, 10, 10)).save(tmp_path / "a.png")
    (tmp_path / "broken.jpg").write_bytes(b"not an image")

    args = SimpleNamespace(folder=str(tmp_path), max_width=16, quality=80)
    rc = compress(args)
    out = capsys.readouterr().out

    assert rc == 1
    assert "a.png -> a.webp" in out
    assert "skipping broken.jpg" in out
    assert (tmp_path / "a.webp").exists()
    assert not (tmp_path / "a.png").exists()
