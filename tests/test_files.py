"""Tests for proof image storage."""

import re

import pytest
from conftest import make_image_bytes, stage
from PIL import Image

from campus_lostfound.storage import ImageProcessingError
from campus_lostfound.storage.files import generate_unique_filename


class TestValidateUpload:
    def test_accepts_images(self, files):
        assert files.validate_upload("photo.JPG", "image/jpeg", 1024) == []
        assert files.validate_upload("photo.webp", "image/webp", 1024) == []

    def test_rejects_extension(self, files):
        errors = files.validate_upload("photo.gif", "image/gif", 1024)

        assert len(errors) == 1
        assert "invalid file type" in errors[0]

    def test_rejects_mime_type(self, files):
        errors = files.validate_upload("photo.png", "application/pdf", 1024)

        assert errors == ["photo.png: invalid file format. Only images are allowed."]

    def test_rejects_oversize(self, files, config):
        errors = files.validate_upload("photo.png", "image/png", config.storage.max_file_size + 1)

        assert errors == ["photo.png: file exceeds 5 MB limit"]


class TestStaging:
    def test_unique_filename_keeps_extension(self):
        name = generate_unique_filename("My Photo.PNG")

        assert re.fullmatch(r"\d+-[0-9a-f]{16}\.png", name)
        assert generate_unique_filename("a.png") != generate_unique_filename("a.png")

    def test_stage_upload_writes_chunks(self, files):
        upload = files.stage_upload("wallet.png", [b"abc", b"def"], "image/png")

        assert upload.path.parent == files.staging_dir
        assert upload.path.read_bytes() == b"abcdef"
        assert upload.size == 6
        assert upload.original_name == "wallet.png"

    def test_move_and_delete_claim_directory(self, files):
        upload = stage(files, "wallet.png", make_image_bytes())

        moved = files.move_to_claim_directory(upload.path, 42)

        assert moved.parent == files.claim_directory(42)
        assert files.relative_path(moved) == f"claims/42/{upload.file_name}"
        assert files.delete_claim_directory(42)
        assert not moved.exists()
        assert not files.delete_claim_directory(42)

    def test_delete_file_missing_is_false(self, files, tmp_path):
        assert not files.delete_file(tmp_path / "nope.png")


class TestProcessImage:
    def test_small_image_untouched(self, files):
        upload = stage(files, "small.png", make_image_bytes(size=(100, 80)))
        before = upload.path.read_bytes()

        processed = files.process_image(upload.path)

        assert (processed.width, processed.height) == (100, 80)
        assert upload.path.read_bytes() == before

    def test_large_image_fits_max_dimension(self, files):
        upload = stage(files, "tall.jpg", make_image_bytes("JPEG", (1000, 3000)), "image/jpeg")

        processed = files.process_image(upload.path)

        assert (processed.width, processed.height) == (640, 1920)
        with Image.open(upload.path) as img:
            assert img.format == "JPEG"
            assert img.size == (640, 1920)

    def test_corrupt_image_raises(self, files):
        upload = stage(files, "broken.png", b"\x89PNG not really")

        with pytest.raises(ImageProcessingError) as exc_info:
            files.process_image(upload.path)

        err = exc_info.value
        assert err.http_status == 400
        assert err.code == "invalid_image"
        assert err.errors[0]["message"].endswith("not a valid image")
