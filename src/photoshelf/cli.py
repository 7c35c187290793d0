import argparse
from pathlib import Path
from typing import Iterable

from loguru import logger

from photoshelf.backends.base import StorageError
from photoshelf.backends.factory import create_backend
from photoshelf.lib.config import BACKENDS, Settings, load_settings
from photoshelf.lib.filetype import guess_media_type, is_image_name
from photoshelf.lib.identity import POLICIES
from photoshelf.lib.imaging import MAX_WIDTH, WEBP_QUALITY, compress_folder
from photoshelf.lib.logging import init_logging
from photoshelf.models.domain import CandidateFile, UploadOutcome, UploadReport
from photoshelf.services.gallery import Gallery, PartialDeleteError
from photoshelf.services.orchestrator import BatchError, UploadOrchestrator


def _iter_files(folder: Path, recursive: bool) -> Iterable[Path]:
    """Iterate over image files in folder, skipping directories and unreadable entries."""
    entries = folder.rglob("*") if recursive else folder.iterdir()
    for p in sorted(entries):
        try:
            if p.is_file() and is_image_name(p.name):
                yield p
        except OSError:
            continue


def _collect_paths(paths: Iterable[str], recursive: bool) -> list[Path]:
    out: list[Path] = []
    for raw in paths:
        p = Path(raw)
        if p.is_dir():
            out.extend(_iter_files(p, recursive))
        else:
            out.append(p)
    return out


def _settings(args) -> Settings:
    # an injected Settings (tests) wins over the config file
    settings = getattr(args, "settings", None)
    if settings is None:
        settings = load_settings(getattr(args, "config", None))
    # CLI overrides (if provided) take precedence over config file and env
    if getattr(args, "backend", None):
        settings.backend = args.backend
    if getattr(args, "group_size", None):
        settings.group_size = args.group_size
    if getattr(args, "policy", None):
        settings.identity_policy = args.policy
    return settings


def _backend(args, settings: Settings):
    store = getattr(args, "store", None)
    return store if store is not None else create_backend(settings)


def _print_report(report: UploadReport) -> None:
    print(f"Succeeded: {len(report.succeeded)}")
    for o in report.succeeded:
        print(f"  + {o.candidate.name} -> {o.url}")
    print(f"Duplicate: {len(report.duplicates)}")
    for o in report.duplicates:
        print(f"  = {o.candidate.name} (already stored as {o.existing_identifier})")
    print(f"Failed: {len(report.failed)}")
    for o in report.failed:
        print(f"  ! {o.candidate.name}: {o.reason}")


def upload(args):
    settings = _settings(args)
    try:
        backend = _backend(args, settings)
    except ValueError as e:
        print(f"ERROR: {e}")
        return 1

    paths = _collect_paths(args.paths, bool(getattr(args, "recursive", False)))
    if not paths:
        print("No image files to upload")
        return 0

    candidates = []
    unreadable = []
    for p in paths:
        try:
            candidates.append(CandidateFile.from_path(p))
        except OSError as exc:
            logger.warning("cannot read {}: {}", p, exc)
            placeholder = CandidateFile(name=p.name, data=b"",
                                        content_type=guess_media_type(p.name) or "application/octet-stream")
            unreadable.append(UploadOutcome.failed(placeholder, f"Cannot read file: {exc.strerror or exc}",
                                                   error_kind="validation"))

    gallery = Gallery(backend, ttl=settings.cache_ttl)
    try:
        orchestrator = UploadOrchestrator.from_settings(backend, settings, on_stored=gallery.invalidate)
    except ValueError as e:
        print(f"ERROR: {e}")
        return 1

    print(f"Uploading {len(candidates)} file(s) to {settings.backend} in groups of {orchestrator.group_size}")
    try:
        report = orchestrator.upload(candidates)
        retries = getattr(args, "retry_failed", 0) or 0
        for attempt in range(1, retries + 1):
            if not report.failed:
                break
            print(f"Retrying {len(report.failed)} failed file(s) (attempt {attempt}/{retries})")
            retried = orchestrator.retry_failed(report)
            kept = [o for o in report.outcomes if o.ok]
            report = UploadReport(outcomes=kept + retried.outcomes,
                                  upload_calls=report.upload_calls + retried.upload_calls)
    except BatchError as e:
        print(f"FATAL: {e}")
        return 1

    if unreadable:
        report = UploadReport(outcomes=unreadable + report.outcomes, upload_calls=report.upload_calls)
    _print_report(report)
    return 1 if report.failed else 0


def list_photos(args):
    settings = _settings(args)
    gallery = Gallery(_backend(args, settings), ttl=settings.cache_ttl,
                      fallback_images=settings.fallback_images)
    photos = gallery.photos()
    if not photos:
        print("No photos found")
        return 0
    for rec in photos:
        when = rec.uploaded_at.isoformat() if rec.uploaded_at else "-"
        print(f"{rec.name}\t{when}\t{rec.url}")
    return 0


def ids(args):
    settings = _settings(args)
    for ident in Gallery(_backend(args, settings)).photo_ids():
        print(ident)
    return 0


def delete(args):
    settings = _settings(args)
    try:
        Gallery(_backend(args, settings)).delete_photo(args.name)
    except StorageError as e:
        print(f"ERROR: could not delete {args.name}: {e}")
        return 1
    print(f"Deleted {args.name}")
    return 0


def delete_all(args):
    if not getattr(args, "yes", False):
        print("Refusing to delete every photo without --yes")
        return 1
    settings = _settings(args)
    try:
        count = Gallery(_backend(args, settings)).delete_all()
    except PartialDeleteError as e:
        print(f"Deleted {e.deleted} photo(s)")
        print(f"Failed: {len(e.failed)}")
        for name, err in e.failed.items():
            print(f"  ! {name}: {err}")
        return 1
    except StorageError as e:
        print(f"ERROR: {e}")
        return 1
    print(f"Deleted {count} photo(s)")
    return 0


def setup(args):
    settings = _settings(args)
    backend = _backend(args, settings)
    try:
        print(backend.setup())
    except StorageError as e:
        print(f"ERROR: setup failed: {e}")
        return 1
    return 0


def check(args):
    settings = _settings(args)
    backend = _backend(args, settings)
    if backend.health_check():
        print(f"{settings.backend} storage is reachable")
        return 0
    print(f"ERROR: {settings.backend} storage is not reachable (run setup, then check credentials)")
    return 1


def compress(args):
    folder = Path(args.folder)
    if not folder.is_dir():
        print(f"ERROR: not a folder: {folder}")
        return 1
    results = compress_folder(folder, args.max_width, args.quality)
    if not results:
        print("No images to compress")
        return 0
    saved = 0
    for r in results:
        if r.error:
            print(f"skipping {r.source.name}: {r.error}")
            continue
        saved += r.saved
        print(f"{r.source.name} -> {r.target.name} ({r.size_before:,} -> {r.size_after:,} bytes)")
    print(f"Saved {saved:,} bytes")
    return 1 if any(r.error for r in results) else 0


def main(argv=None):
    parser = argparse.ArgumentParser(prog="photoshelf")
    parser.add_argument("--config", help="Path to JSON config file (default: photoshelf.json)")
    parser.add_argument("--backend", choices=BACKENDS, help="Override config: storage backend")
    parser.add_argument("--verbose", action="store_true", help="Log progress to stderr")
    parser.add_argument("--log-dir", help="Also write logs to this directory")
    sub = parser.add_subparsers(dest="cmd")

    p_up = sub.add_parser("upload", help="Upload photos, skipping ones already stored")
    p_up.add_argument("paths", nargs="+", help="Files or folders to upload")
    p_up.add_argument("--group-size", type=int, help="Override config: uploads in flight at once")
    p_up.add_argument("--policy", choices=sorted(POLICIES), help="Override config: identity policy")
    p_up.add_argument("--recursive", action="store_true", help="Recurse into subfolders")
    p_up.add_argument("--retry-failed", type=int, default=0, metavar="N",
                      help="Retry failed files up to N times")
    p_up.set_defaults(func=upload)

    p_list = sub.add_parser("list", help="List stored photos, newest first")
    p_list.set_defaults(func=list_photos)

    p_ids = sub.add_parser("ids", help="Print identifiers of stored photos")
    p_ids.set_defaults(func=ids)

    p_del = sub.add_parser("delete", help="Delete one stored photo")
    p_del.add_argument("name")
    p_del.set_defaults(func=delete)

    p_del_all = sub.add_parser("delete-all", help="Delete every stored photo")
    p_del_all.add_argument("--yes", action="store_true", help="Confirm deletion")
    p_del_all.set_defaults(func=delete_all)

    p_setup = sub.add_parser("setup", help="Create the bucket or folder if needed")
    p_setup.set_defaults(func=setup)

    p_check = sub.add_parser("check", help="Check that the storage backend is reachable")
    p_check.set_defaults(func=check)

    p_comp = sub.add_parser("compress", help="Convert a folder of photos to WebP")
    p_comp.add_argument("folder")
    p_comp.add_argument("--max-width", type=int, default=MAX_WIDTH)
    p_comp.add_argument("--quality", type=int, default=WEBP_QUALITY)
    p_comp.set_defaults(func=compress)

    args = parser.parse_args(argv)
    init_logging(args.log_dir, level="INFO" if args.verbose else "WARNING")
    if hasattr(args, "func"):
        try:
            return args.func(args)
        except ValueError as e:
            # bad configuration: unknown backend, missing credentials, unknown policy
            logger.debug("configuration error: {}", e)
            print(f"ERROR: {e}")
            return 1
    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
