"""Tests for upload decoding and model input preparation."""

from __future__ import annotations

import io

import numpy as np
import pytest
from PIL import Image

from imagelens.config import Settings
from imagelens.errors import UnsupportedFileError
from imagelens.ml.preprocessing import ImagePreprocessor, resize_normalize


def _encode(image: Image.Image, fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture()
def preprocessor() -> ImagePreprocessor:
    return ImagePreprocessor.from_settings(Settings())


class TestDecodeUpload:
    def test_decodes_png_to_rgb_array(self, preprocessor: ImagePreprocessor) -> None:
        data = _encode(Image.new("RGB", (40, 30), (10, 20, 30)))

        image = preprocessor.decode_upload(data, "image/png")

        assert image.shape == (30, 40, 3)
        assert image.dtype == np.uint8
        assert image[0, 0].tolist() == [10, 20, 30]

    def test_rgba_is_flattened_to_rgb(self, preprocessor: ImagePreprocessor) -> None:
        data = _encode(Image.new("RGBA", (8, 8), (200, 100, 50, 128)))
        assert preprocessor.decode_upload(data, "image/png").shape == (8, 8, 3)

    @pytest.mark.parametrize("content_type", ["text/plain", "application/pdf", "", None])
    def test_rejects_non_image_mime(self, preprocessor: ImagePreprocessor, content_type: str | None) -> None:
        data = _encode(Image.new("RGB", (4, 4)))
        with pytest.raises(UnsupportedFileError):
            preprocessor.decode_upload(data, content_type)

    def test_rejects_undecodable_bytes(self, preprocessor: ImagePreprocessor) -> None:
        with pytest.raises(UnsupportedFileError, match="decode"):
            preprocessor.decode_upload(b"fake image data", "image/jpeg")

    def test_rejects_empty_payload(self, preprocessor: ImagePreprocessor) -> None:
        with pytest.raises(UnsupportedFileError):
            preprocessor.decode_upload(b"", "image/png")

    def test_rejects_oversized_file(self) -> None:
        preprocessor = ImagePreprocessor(max_file_size=10, max_image_pixels=1_000_000)
        with pytest.raises(UnsupportedFileError, match="exceeds"):
            preprocessor.decode_upload(_encode(Image.new("RGB", (4, 4))), "image/png")

    def test_rejects_too_many_pixels(self) -> None:
        preprocessor = ImagePreprocessor(max_file_size=1_000_000, max_image_pixels=100)
        with pytest.raises(UnsupportedFileError, match="pixels"):
            preprocessor.decode_upload(_encode(Image.new("RGB", (20, 20))), "image/png")

    def test_applies_exif_orientation(self, preprocessor: ImagePreprocessor) -> None:
        image = Image.new("RGB", (40, 20), (0, 0, 0))
        exif = Image.Exif()
        exif[0x0112] = 6  # rotate 90 degrees clockwise on display
        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", exif=exif)

        decoded = preprocessor.decode_upload(buffer.getvalue(), "image/jpeg")

        assert decoded.shape == (40, 20, 3)


class TestResizeNormalize:
    def test_shape_and_normalization(self) -> None:
        image = np.full((10, 20, 3), 255, dtype=np.uint8)

        tensor = resize_normalize(image, (8, 4), (0.5, 0.5, 0.5), (0.5, 0.5, 0.5))

        assert tensor.shape == (1, 3, 4, 8)
        assert tensor.dtype == np.float32
        assert np.allclose(tensor, 1.0)
