from PIL import Image

from photoshelf.lib.imaging import compress_folder, compress_image


def test_large_image_is_scaled_to_max_width(tmp_path):
    src = tmp_path / "IMG_1.jpg"
    Image.new("RGB", (400, 200), (0, 120, 255)).save(src, "JPEG")

    result = compress_image(src, max_width=100, quality=70)

    assert result.error == ""
    assert result.target == tmp_path / "IMG_1.webp"
    assert not src.exists()
    with Image.open(result.target) as img:
        assert img.format == "WEBP"
        assert img.size == (100, 50)


def test_webp_source_is_replaced_in_place(tmp_path):
    src = tmp_path / "photo.webp"
    Image.new("RGBA", (50, 50), (0, 0, 0, 128)).save(src, "WEBP")

    result = compress_image(src, max_width=20)

    assert result.target == src
    assert not (tmp_path / "photo.tmp.webp").exists()
    with Image.open(src) as img:
        assert img.size == (20, 20)


def test_compress_folder_skips_non_images(tmp_path):
    Image.new("L", (10, 10)).save(tmp_path / "gray.png")
    (tmp_path / "notes.txt").write_text("x")

    results = compress_folder(tmp_path)

    assert [r.source.name for r in results] == ["gray.png"]
    assert (tmp_path / "gray.webp").exists()
    assert (tmp_path / "notes.txt").exists()
