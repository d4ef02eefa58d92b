"""
Proof image storage.

Stages uploads, validates and downsizes images with Pillow, and moves them
into per-claim directories.
"""

from .files import FileStorage, ImageProcessingError, ProcessedImage, StagedUpload

__all__ = ["FileStorage", "ImageProcessingError", "ProcessedImage", "StagedUpload"]
