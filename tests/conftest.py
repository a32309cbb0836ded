"""Pytest fixtures for inktrace tests."""

import os
import tempfile

import cv2
import numpy as np
import pytest


RED = (255, 0, 0)
WHITE = (255, 255, 255)


def to_buffer(img):
    """Wrap an RGB(A) array as a PixelBuffer."""
    from inktrace.io.pixel_source import pixel_buffer_from_array
    return pixel_buffer_from_array(img)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def red_square_image():
    """400x400 white canvas with a solid 200x200 red square in the middle."""
    img = np.full((400, 400, 3), 255, dtype=np.uint8)
    cv2.rectangle(img, (100, 100), (299, 299), RED, -1)
    return img


@pytest.fixture
def red_square_buffer(red_square_image):
    return to_buffer(red_square_image)


@pytest.fixture
def flat_gray_buffer():
    """Uniform mid-gray image without any edges."""
    img = np.full((90, 120, 3), 128, dtype=np.uint8)
    return to_buffer(img)


@pytest.fixture
def speckle_buffer():
    """50 random dark 3x3 speckles on a white 200x200 canvas."""
    rng = np.random.default_rng(7)
    colors = rng.integers(0, 160, size=(50, 3))

    img = np.full((200, 200, 3), 255, dtype=np.uint8)
    for i, color in enumerate(colors):
        x = 15 + (i % 10) * 18
        y = 20 + (i // 10) * 36
        img[y:y + 3, x:x + 3] = color
    return to_buffer(img)


@pytest.fixture
def transparent_buffer():
    """Fully transparent RGBA image."""
    return to_buffer(np.zeros((50, 50, 4), dtype=np.uint8))


@pytest.fixture
def four_color_buffer():
    """Four flat quadrants: red, green, blue and white."""
    img = np.full((120, 120, 3), 255, dtype=np.uint8)
    img[:60, :60] = (220, 30, 30)
    img[:60, 60:] = (30, 160, 60)
    img[60:, :60] = (40, 60, 200)
    return to_buffer(img)


@pytest.fixture
def default_config():
    """Create default pipeline configuration."""
    from inktrace.config import PipelineConfig
    return PipelineConfig()


@pytest.fixture
def red_square_file(temp_dir, red_square_image):
    """Red square written to disk as PNG."""
    path = os.path.join(temp_dir, "red_square.png")
    cv2.imwrite(path, cv2.cvtColor(red_square_image, cv2.COLOR_RGB2BGR))
    return path
