"""
Unit tests for image_processing module.

Tests enhancement, rotation, cropping, decode/encode, upload compression
and the one-pass auto processing pipeline.
"""

import base64
import io

import numpy as np
import pytest
from PIL import Image

from card_scanner import CropRegion, DecodeFailure, RasterImage
from image_processing import (
    apply_brightness_contrast,
    base64_to_bytes,
    auto_process_card,
    bytes_to_base64,
    compress_for_upload,
    crop_image,
    decode_image,
    encode_image,
    resize_to_fit,
    rotate_image,
)


def png_bytes(array):
    buffer = io.BytesIO()
    Image.fromarray(array).save(buffer, format='PNG')
    return buffer.getvalue()


class TestBrightnessContrast:
    """Tests for apply_brightness_contrast."""

    def test_brightness_clamps_to_white(self):
        """Should clamp gray 128 at 150% brightness to pure white."""
        image = RasterImage.blank(10, 10, (128, 128, 128, 255))
        result = apply_brightness_contrast(image, brightness=150, contrast=100)
        assert (result.pixels[:, :, :3] == 255).all()

    def test_contrast_scales_from_mid_gray(self):
        """Should double the distance from 128 at 200% contrast."""
        image = RasterImage.blank(2, 2, (100, 140, 128, 255))
        result = apply_brightness_contrast(image, brightness=100, contrast=200)
        assert tuple(result.pixels[0, 0]) == (72, 152, 128, 255)

    def test_brightness_before_contrast(self):
        """Should brighten first, then apply contrast."""
        image = RasterImage.blank(1, 1, (100, 100, 100, 255))
        result = apply_brightness_contrast(image, brightness=110, contrast=120)
        # 100 + 25.5 = 125.5, then (125.5 - 128) * 1.2 + 128 = 125.0
        assert tuple(result.pixels[0, 0]) == (125, 125, 125, 255)

    def test_alpha_untouched(self):
        """Should leave the alpha channel alone."""
        image = RasterImage.blank(3, 3, (10, 20, 30, 77))
        result = apply_brightness_contrast(image, brightness=50, contrast=200)
        assert (result.pixels[:, :, 3] == 77).all()

    def test_defaults_are_identity(self, noise_image):
        """Should return the input unchanged at 100% / 100%."""
        assert apply_brightness_contrast(noise_image) is noise_image


class TestRotateImage:
    """Tests for rotate_image."""

    def test_zero_rotation(self, noise_image):
        """Should return the same raster for a full turn or none."""
        assert rotate_image(noise_image, 0) is noise_image
        assert rotate_image(noise_image, 360) is noise_image

    def test_keeps_canvas_size(self, noise_image):
        """Should keep width and height for any angle."""
        assert rotate_image(noise_image, 37).size == noise_image.size

    def test_positive_is_clockwise(self):
        """Should move the top half to the right side for +90 degrees."""
        pixels = np.zeros((40, 40, 4), dtype=np.uint8)
        pixels[:20] = (255, 0, 0, 255)
        pixels[20:] = (0, 0, 255, 255)
        rotated = rotate_image(RasterImage(pixels), 90)

        assert tuple(rotated.pixels[20, 35]) == (255, 0, 0, 255)
        assert tuple(rotated.pixels[20, 5]) == (0, 0, 255, 255)

    def test_uncovered_corners_transparent(self):
        """Should leave the corners exposed by rotation transparent."""
        rotated = rotate_image(RasterImage.blank(100, 40, (255, 255, 255, 255)), 45)
        assert rotated.pixels[0, 0, 3] == 0


class TestCropImage:
    """Tests for crop_image."""

    def test_exact_crop_size(self):
        """Should yield exactly 100x60 for a (10, 10, 100, 60) crop of a 200x150 image."""
        image = RasterImage.blank(200, 150)
        assert crop_image(image, CropRegion(10, 10, 100, 60)).size == (100, 60)

    def test_crop_contents(self, noise_image):
        """Should copy the selected pixels."""
        result = crop_image(noise_image, CropRegion(5, 4, 10, 6))
        assert np.array_equal(result.pixels, noise_image.pixels[4:10, 5:15])

    def test_clips_to_image(self, noise_image):
        """Should clip regions hanging off the image."""
        result = crop_image(noise_image, CropRegion(30, 20, 50, 50))
        assert result.size == (10, 10)


class TestDecodeEncode:
    """Tests for decode_image and encode_image."""

    def test_decodes_png(self, noise_image):
        """Should decode PNG bytes to the same RGBA pixels."""
        image = decode_image(png_bytes(noise_image.copy_pixels()))
        assert np.array_equal(image.pixels, noise_image.pixels)

    def test_decodes_rgb_as_opaque(self):
        """Should add an opaque alpha channel to RGB input."""
        rgb = np.full((4, 6, 3), 90, dtype=np.uint8)
        image = decode_image(png_bytes(rgb))
        assert image.size == (6, 4)
        assert (image.pixels[:, :, 3] == 255).all()

    def test_decodes_data_uri(self, noise_image):
        """Should accept base64 data URIs with missing padding."""
        b64 = bytes_to_base64(png_bytes(noise_image.copy_pixels())).rstrip('=')
        image = decode_image('data:image/png;base64,' + b64)
        assert image.size == noise_image.size

    def test_max_dimension(self, card_png_bytes):
        """Should cap the longest edge."""
        image = decode_image(card_png_bytes, max_dimension=400)
        assert image.size == (400, 250)

    @pytest.mark.parametrize('data', [b'', b'not an image', '!!!'])
    def test_decode_failure(self, data):
        """Should raise DecodeFailure for empty or undecodable input."""
        with pytest.raises(DecodeFailure):
            decode_image(data)

    def test_applies_exif_orientation(self):
        """Should rotate images tagged with EXIF orientation 6."""
        image = Image.new('RGB', (30, 10), (0, 128, 0))
        exif = image.getexif()
        exif[0x0112] = 6
        buffer = io.BytesIO()
        image.save(buffer, format='JPEG', exif=exif.tobytes())

        decoded = decode_image(buffer.getvalue())
        assert decoded.size == (10, 30)

    def test_png_round_trip(self, noise_image):
        """Should encode PNG losslessly with the right mime type."""
        encoded = encode_image(noise_image, 'png')
        assert encoded.mime_type == 'image/png'
        assert np.array_equal(decode_image(encoded.data).pixels, noise_image.pixels)

    def test_jpeg_drops_alpha(self, noise_image):
        """Should produce an opaque JPEG."""
        encoded = encode_image(noise_image, 'JPEG', quality=80)
        assert encoded.mime_type == 'image/jpeg'
        assert encoded.data[:2] == b'\xff\xd8'
        assert (decode_image(encoded.data).pixels[:, :, 3] == 255).all()

    def test_base64_helpers(self):
        """Should round-trip bytes through base64 text."""
        assert base64_to_bytes(bytes_to_base64(b'card')) == b'card'
        encoded = encode_image(RasterImage.blank(2, 2), 'PNG')
        assert base64.b64decode(encoded.to_base64()) == encoded.data

    def test_unsupported_format(self, noise_image):
        """Should reject unknown output formats."""
        with pytest.raises(ValueError):
            encode_image(noise_image, 'TIFF')


class TestCompression:
    """Tests for resize_to_fit and compress_for_upload."""

    def test_resize_keeps_aspect(self):
        """Should scale down to fit while keeping the aspect ratio."""
        image = resize_to_fit(RasterImage.blank(2000, 1500), 1200, 800)
        assert image.size == (1067, 800)

    def test_small_image_untouched(self, noise_image):
        """Should not upscale small images."""
        assert resize_to_fit(noise_image, 1200, 800) is noise_image

    def test_compresses_within_limits(self):
        """Should produce a JPEG inside the size and dimension limits."""
        rng = np.random.default_rng(7)
        pixels = rng.integers(0, 256, size=(1500, 2000, 4), dtype=np.uint8)
        encoded = compress_for_upload(RasterImage(pixels), max_bytes=2_000_000)

        assert encoded.mime_type == 'image/jpeg'
        assert len(encoded.data) <= 2_000_000
        assert decode_image(encoded.data).size == (1067, 800)

    def test_returns_last_attempt_when_too_large(self, noise_image):
        """Should still return bytes when no quality step fits."""
        encoded = compress_for_upload(noise_image, max_bytes=10)
        assert len(encoded.data) > 10


class TestAutoProcessCard:
    """Tests for the one-pass auto pipeline."""

    def test_processes_card_photo(self, card_png_bytes):
        """Should detect, rectify, enhance and encode the card."""
        processed = auto_process_card(card_png_bytes)

        assert processed.candidate.confidence > 0.8
        assert not processed.fell_back
        assert abs(processed.image.width - 600) <= 3
        assert abs(processed.image.height - 360) <= 3
        assert processed.encoded.mime_type == 'image/jpeg'
        assert len(processed.record_id) == 36

    def test_applies_auto_enhance(self, card_png_bytes):
        """Should brighten the light card face to white."""
        processed = auto_process_card(card_png_bytes, output_format='PNG')
        center = processed.image.pixels[processed.image.height // 2, processed.image.width // 2]
        # 230 + 25.5 clamps well above 255 after contrast
        assert tuple(center) == (255, 255, 255, 255)

    def test_invalid_input(self):
        """Should propagate DecodeFailure."""
        with pytest.raises(DecodeFailure):
            auto_process_card(b'\x00\x01')
