"""
File storage for claim proof images.

Layout under the configured upload_dir:
- tmp/: staged uploads awaiting a claim transaction
- claims/<claim_id>/: images of a committed claim

Files only land in a claim directory from inside the claim transaction;
callers delete them again if that transaction fails.
"""

import logging
import secrets
import shutil
import time
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from PIL import Image

from ..config import StorageConfig
from ..errors import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = frozenset({"image/jpeg", "image/jpg", "image/png", "image/webp"})


class ImageProcessingError(ValidationError):
    """Uploaded file is not a readable image."""

    code = "invalid_image"

    def __init__(self, file_name: str, detail: str):
        self.file_name = file_name
        super().__init__(
            "Failed to process image",
            errors=[{"field": "images", "message": f"{file_name}: {detail}"}],
        )


@dataclass
class StagedUpload:
    """An upload written to the staging area."""

    path: Path
    original_name: str
    mime_type: str
    size: int

    @property
    def file_name(self) -> str:
        return self.path.name


@dataclass
class ProcessedImage:
    """Image dimensions and size after processing."""

    width: int
    height: int
    size: int


def generate_unique_filename(original_name: str) -> str:
    """Timestamp plus random hex, keeping the original (lowercased) extension."""
    ext = Path(original_name).suffix.lower()
    return f"{int(time.time() * 1000)}-{secrets.token_hex(8)}{ext}"


class FileStorage:
    """Filesystem storage for proof images."""

    def __init__(self, config: StorageConfig):
        self.config = config
        self.upload_dir = Path(config.upload_dir)
        self.staging_dir = self.upload_dir / "tmp"
        self.claims_dir = self.upload_dir / "claims"

    def validate_upload(self, original_name: str, mime_type: str, size: int) -> list[str]:
        """
        Check one upload against type and size limits.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []
        ext = Path(original_name).suffix.lower()
        if ext not in self.config.allowed_extensions:
            allowed = ", ".join(self.config.allowed_extensions)
            errors.append(f"{original_name}: invalid file type. Only {allowed} are allowed.")
        elif (mime_type or "").lower() not in ALLOWED_MIME_TYPES:
            errors.append(f"{original_name}: invalid file format. Only images are allowed.")
        if size > self.config.max_file_size:
            limit_mb = self.config.max_file_size / (1024 * 1024)
            errors.append(f"{original_name}: file exceeds {limit_mb:g} MB limit")
        return errors

    def stage_upload(
        self,
        original_name: str,
        chunks: Iterable[bytes],
        mime_type: str,
    ) -> StagedUpload:
        """Write an upload to the staging area under a unique name."""
        self.staging_dir.mkdir(parents=True, exist_ok=True)
        path = self.staging_dir / generate_unique_filename(original_name)
        size = 0
        with open(path, "wb") as f:
            for chunk in chunks:
                f.write(chunk)
                size += len(chunk)
        return StagedUpload(path=path, original_name=original_name, mime_type=mime_type, size=size)

    def process_image(self, path: Path) -> ProcessedImage:
        """
        Verify an image and downsize it in place to fit max_dimension.

        Raises:
            ImageProcessingError: If the file is not a readable image
        """
        max_dim = self.config.max_dimension
        try:
            with Image.open(path) as img:
                img.verify()

            # verify() leaves the image unusable; reopen to read pixels
            with Image.open(path) as img:
                width, height = img.size
                if width > max_dim or height > max_dim:
                    image_format = img.format
                    img.load()
                    img.thumbnail((max_dim, max_dim), Image.Resampling.LANCZOS)
                    img.save(path, format=image_format)
                    width, height = img.size
        except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
            logger.error(f"Image processing error for {path.name}: {e}")
            raise ImageProcessingError(path.name, "not a valid image") from e

        return ProcessedImage(width=width, height=height, size=path.stat().st_size)

    def claim_directory(self, claim_id: int) -> Path:
        return self.claims_dir / str(claim_id)

    def move_to_claim_directory(self, path: Path, claim_id: int) -> Path:
        """Move a staged file into the claim's directory. Returns the new path."""
        target_dir = self.claim_directory(claim_id)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / path.name
        shutil.move(str(path), str(target))
        return target

    def delete_file(self, path: Path) -> bool:
        """Delete a file if present. Failures are logged, not raised."""
        try:
            if path.exists():
                path.unlink()
                logger.info(f"File deleted: {path}")
                return True
        except OSError as e:
            logger.error(f"File deletion error for {path}: {e}")
        return False

    def delete_claim_directory(self, claim_id: int) -> bool:
        """Remove a claim's directory and everything in it."""
        target_dir = self.claim_directory(claim_id)
        if not target_dir.exists():
            return False
        try:
            shutil.rmtree(target_dir)
            logger.info(f"Claim directory deleted: {target_dir}")
            return True
        except OSError as e:
            logger.error(f"Failed to delete claim directory {target_dir}: {e}")
            return False

    def relative_path(self, path: Path) -> str:
        """Path relative to upload_dir, as stored in claim_images.file_path."""
        try:
            return str(path.relative_to(self.upload_dir))
        except ValueError:
            return str(path)
