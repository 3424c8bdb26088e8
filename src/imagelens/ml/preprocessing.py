"""Image decoding at the upload boundary and model input preparation.

Handles MIME screening, decoding, EXIF orientation, color space conversion,
size validation and conversion to numpy arrays for model input.
"""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from imagelens.errors import UnsupportedFileError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from imagelens.config import Settings

logger = logging.getLogger(__name__)


class ImagePreprocessor:
    """Decodes uploads into RGB rasters and prepares model input tensors."""

    def __init__(self, max_file_size: int, max_image_pixels: int) -> None:
        self._max_file_size = max_file_size
        self._max_image_pixels = max_image_pixels

    @classmethod
    def from_settings(cls, settings: Settings) -> ImagePreprocessor:
        return cls(max_file_size=settings.max_file_size, max_image_pixels=settings.max_image_pixels)

    def decode_upload(self, data: bytes, content_type: str | None) -> NDArray[np.uint8]:
        """Screen an upload by MIME type, then decode it.

        Raises:
            UnsupportedFileError: If the MIME type is not ``image/*`` or decoding fails.
        """
        if not content_type or not content_type.lower().startswith("image/"):
            raise UnsupportedFileError(f"Unsupported content type: {content_type!r}")
        return self.decode_image(data)

    def decode_image(self, image_bytes: bytes) -> NDArray[np.uint8]:
        """Decode raw image bytes into an RGB uint8 numpy array.

        Args:
            image_bytes: Raw file bytes (any format Pillow can read).

        Returns:
            HxWx3 RGB uint8 numpy array, EXIF orientation applied.

        Raises:
            UnsupportedFileError: If the image cannot be decoded or exceeds size limits.
        """
        if not image_bytes:
            raise UnsupportedFileError("Empty upload")
        if len(image_bytes) > self._max_file_size:
            raise UnsupportedFileError(f"Upload of {len(image_bytes)} bytes exceeds {self._max_file_size}")

        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                pixels = img.width * img.height
                if pixels > self._max_image_pixels:
                    raise UnsupportedFileError(f"Image of {pixels} pixels exceeds {self._max_image_pixels}")
                oriented = ImageOps.exif_transpose(img)
                rgb = oriented.convert("RGB")
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError) as exc:
            raise UnsupportedFileError(f"Could not decode image: {exc}") from exc

        logger.debug("Decoded %dx%d image (%d bytes)", rgb.width, rgb.height, len(image_bytes))
        return np.asarray(rgb, dtype=np.uint8)


def resize_normalize(
    image: NDArray[np.uint8],
    size: tuple[int, int],
    mean: tuple[float, float, float],
    std: tuple[float, float, float],
) -> NDArray[np.float32]:
    """Resize to ``size`` (width, height) and return a normalized 1x3xHxW tensor."""
    resized = Image.fromarray(image).convert("RGB").resize(size, Image.Resampling.BILINEAR)
    tensor = np.asarray(resized, dtype=np.float32) / 255.0
    tensor = (tensor - np.asarray(mean, dtype=np.float32)) / np.asarray(std, dtype=np.float32)
    return np.ascontiguousarray(tensor.transpose(2, 0, 1)[np.newaxis, ...], dtype=np.float32)
