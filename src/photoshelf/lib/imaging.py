"""Shrink a folder of photos to WebP before they are published.

Each image is rotated per its EXIF orientation, scaled to fit inside
``max_width`` x ``max_width`` (never enlarged) and written as WebP next to the
original, which is then removed.
"""
from __future__ import annotations

from pathlib import Path
from typing import NamedTuple, Optional

from loguru import logger
from PIL import Image, ImageOps

from photoshelf.lib.filetype import is_image_name

MAX_WIDTH = 1920
WEBP_QUALITY = 90


class CompressResult(NamedTuple):
    source: Path
    target: Optional[Path]
    size_before: int
    size_after: int
    error: str = ""

    @property
    def saved(self) -> int:
        return self.size_before - self.size_after


def compress_image(path: Path, max_width: int = MAX_WIDTH, quality: int = WEBP_QUALITY) -> CompressResult:
    """Convert one image to WebP. Failures are returned, not raised."""
    size_before = path.stat().st_size
    target = path.with_suffix(".webp")
    same_file = target.resolve() == path.resolve()
    out_path = path.with_name(f"{path.stem}.tmp.webp") if same_file else target

    try:
        with Image.open(path) as img:
            img = ImageOps.exif_transpose(img)
            img.thumbnail((max_width, max_width))
            if img.mode not in ("RGB", "RGBA"):
                img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
            img.save(out_path, "WEBP", quality=quality, method=6)
    except (OSError, ValueError) as e:
        logger.warning("could not compress {}: {}", path.name, e)
        out_path.unlink(missing_ok=True)
        return CompressResult(path, None, size_before, size_before, str(e))

    size_after = out_path.stat().st_size
    if same_file:
        out_path.replace(target)
    else:
        path.unlink()
    return CompressResult(path, target, size_before, size_after)


def compress_folder(folder: Path, max_width: int = MAX_WIDTH, quality: int = WEBP_QUALITY) -> list[CompressResult]:
    """Compress every gallery image directly inside ``folder``."""
    results = []
    for p in sorted(folder.iterdir()):
        if p.is_file() and is_image_name(p.name) and not p.name.endswith(".tmp.webp"):
            results.append(compress_image(p, max_width, quality))
    return results
