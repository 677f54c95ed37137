"""
Pytest configuration and shared fixtures for card scanner tests.

This module provides synthetic card photos and editor sessions
used across multiple test modules.
"""

import io

import numpy as np
import pytest
from PIL import Image

from card_scanner import DetectionCandidate, Quadrilateral, RasterImage
from crop_editor import EditorInteractionController

BACKGROUND = (60, 60, 60, 255)
CARD_COLOR = (230, 230, 230, 255)


def make_card_image(width=800, height=500, card_rect=(100, 70, 600, 360)):
    """Build a dark background with one light axis-aligned card on it."""
    pixels = np.empty((height, width, 4), dtype=np.uint8)
    pixels[:, :] = BACKGROUND
    x, y, w, h = card_rect
    pixels[y:y + h, x:x + w] = CARD_COLOR
    return RasterImage(pixels)


@pytest.fixture
def card_image():
    """
    Provide an 800x500 image with a 600x360 card centered in it.

    Returns:
        RasterImage whose card corners are (100, 70) and (700, 430)
    """
    return make_card_image()


@pytest.fixture
def plain_image():
    """
    Provide a uniform gray image with no edges at all.

    Returns:
        400x300 RasterImage
    """
    return RasterImage.blank(400, 300, (128, 128, 128, 255))


@pytest.fixture
def noise_image():
    """
    Provide a seeded random RGBA image for resampling checks.

    Returns:
        RasterImage of size 40x30 with opaque random colors
    """
    rng = np.random.default_rng(1234)
    pixels = rng.integers(0, 256, size=(30, 40, 4), dtype=np.uint8)
    pixels[:, :, 3] = 255
    return RasterImage(pixels)


@pytest.fixture
def card_png_bytes():
    """
    Provide the synthetic card photo encoded as PNG bytes.

    Returns:
        bytes of a PNG file
    """
    buffer = io.BytesIO()
    Image.fromarray(make_card_image().copy_pixels()).save(buffer, format='PNG')
    return buffer.getvalue()


@pytest.fixture
def controller():
    """Provide an editor controller with default settings."""
    return EditorInteractionController()


@pytest.fixture
def editor_state(controller):
    """
    Provide an editor session on a 400x300 image.

    The detection is fixed to the rectangle (100, 100, 200, 120), so the
    crop handles sit at (100,100), (300,100), (300,220), (100,220) and the
    hit radius is 12 px.

    Returns:
        EditorState in Adjust mode
    """
    image = RasterImage.blank(400, 300, (200, 200, 200, 255))
    candidate = DetectionCandidate.from_quad(Quadrilateral.from_rect(100, 100, 200, 120), 0.9)
    return controller.open_session(image, candidate)
