import os
from io import BytesIO

import pytest
from PIL import Image

from socialhub.errors import ValidationFailed
from socialhub.images import ImageStore

from tests._helpers import make_image_bytes, make_upload, make_settings


def _open_stored(store, ref):
    with open(store.path_for(ref), "rb") as f:
        return Image.open(BytesIO(f.read()))


def test_save_writes_webp_under_assets(image_store):
    ref = image_store.save(make_upload())
    assert ref.startswith("/assets/") and ref.endswith(".webp")
    img = _open_stored(image_store, ref)
    assert img.format == "WEBP"
    assert img.size == (64, 64)


def test_large_images_fit_bounding_box_without_enlarging_small(tmp_path):
    store = ImageStore(str(tmp_path / "a"), max_dimension=100)
    wide = _open_stored(store, store.save(make_upload(size=(400, 200))))
    assert wide.size == (100, 50)
    small = _open_stored(store, store.save(make_upload(size=(40, 30))))
    assert small.size == (40, 30)


@pytest.mark.parametrize("mode,color", [("L", 128), ("P", 3), ("RGBA", (1, 2, 3, 128))])
def test_other_modes_are_converted(image_store, mode, color):
    ref = image_store.save(make_upload(mode=mode, color=color))
    assert _open_stored(image_store, ref).format == "WEBP"


def test_jpeg_upload_accepted(image_store):
    ref = image_store.save(make_upload(name="p.jpg", content_type="image/jpeg", fmt="JPEG"))
    assert os.path.exists(image_store.path_for(ref))


def test_non_image_content_type_rejected(image_store):
    with pytest.raises(ValidationFailed) as exc:
        image_store.save(make_upload(name="a.txt", content_type="text/plain"))
    assert exc.value.message == "Not an image! Please upload an image."


def test_undecodable_image_rejected(image_store):
    with pytest.raises(ValidationFailed) as exc:
        image_store.save(make_upload(data=b"definitely not a png"))
    assert exc.value.message == "Uploaded file is not a valid image"


def test_oversized_and_empty_uploads_rejected(tmp_path):
    store = ImageStore(str(tmp_path / "a"), max_bytes=100)
    with pytest.raises(ValidationFailed):
        store.save(make_upload(data=b"x" * 101))
    with pytest.raises(ValidationFailed):
        store.save(make_upload(data=b""))


def test_save_all_is_all_or_nothing(image_store):
    good = make_upload()
    bad = make_upload(data=b"not an image")
    with pytest.raises(ValidationFailed):
        image_store.save_all([good, good, bad])
    assert os.listdir(image_store.upload_dir) == []


def test_save_all_checks_before_writing(image_store):
    with pytest.raises(ValidationFailed):
        image_store.save_all([make_upload(), make_upload(content_type="application/pdf")])
    assert not os.path.exists(image_store.upload_dir) or os.listdir(image_store.upload_dir) == []


def test_path_for_only_accepts_own_references(image_store):
    assert image_store.path_for("/assets/abc.webp") == os.path.join(image_store.upload_dir, "abc.webp")
    assert image_store.path_for("https://cdn.example/x.jpg") is None
    assert image_store.path_for("/assets/../secret") is None
    assert image_store.path_for("/assets/.hidden") is None
    assert image_store.path_for("") is None


def test_delete_ignores_foreign_and_missing(image_store):
    refs = image_store.save_all([make_upload(), make_upload()])
    removed = image_store.delete(refs + ["https://cdn.example/x.jpg", "/assets/missing.webp"])
    assert removed == 2
    assert os.listdir(image_store.upload_dir) == []


def test_from_settings(tmp_path):
    s = make_settings(tmp_path, image_max_dimension=64, image_quality=50)
    store = ImageStore.from_settings(s)
    assert store.upload_dir == s.upload_dir
    assert store.max_dimension == 64
    assert store.quality == 50
    assert store.max_bytes == s.max_upload_bytes


def test_make_image_bytes_helper_is_png():
    assert make_image_bytes()[:8] == b"\x89PNG\r\n\x1a\n"
