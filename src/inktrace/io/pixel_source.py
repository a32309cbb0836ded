"""
Pixel source adapter for inktrace.

Decodes raster files or in-memory image bytes into a PixelBuffer on a
bounded working canvas, and validates buffers handed in by other callers.
Decoding and resizing are delegated to OpenCV.
"""

import os

import cv2
import numpy as np

from inktrace.errors import DecodeError
from inktrace.models import PixelBuffer
from inktrace.tracer import get_tracer, trace


def validate_pixel_buffer(buffer, alpha_floor=10):
    """
    Check that a buffer can be vectorized.

    Raises DecodeError when the geometry is empty or inconsistent with the
    data length, or when no pixel reaches the alpha floor.
    """
    if buffer is None:
        raise DecodeError("No pixel buffer supplied")
    if buffer.width <= 0 or buffer.height <= 0:
        raise DecodeError(f"Empty canvas {buffer.width}x{buffer.height}")
    if buffer.channels not in (3, 4):
        raise DecodeError(f"Unsupported channel count {buffer.channels}; expected 3 or 4")

    expected = buffer.width * buffer.height * buffer.channels
    if len(buffer.data) != expected:
        raise DecodeError(f"Buffer holds {len(buffer.data)} bytes, expected {expected}")

    if buffer.has_alpha:
        alpha = buffer.as_array()[:, :, 3]
        if not np.any(alpha >= alpha_floor):
            raise DecodeError("Image is fully transparent")

    return buffer


def pixel_buffer_from_array(array):
    """
    Wrap an RGB or RGBA uint8 array as a PixelBuffer.

    Grayscale (H, W) arrays are expanded to RGB.
    """
    arr = np.asarray(array)
    if arr.ndim == 2:
        arr = cv2.cvtColor(arr.astype(np.uint8), cv2.COLOR_GRAY2RGB)
    if arr.ndim != 3 or arr.shape[2] not in (3, 4):
        raise DecodeError(f"Unsupported array shape {arr.shape}")

    arr = np.ascontiguousarray(arr, dtype=np.uint8)
    height, width, channels = arr.shape
    return PixelBuffer(width=width, height=height, channels=channels, data=arr.tobytes())


def _to_working_canvas(img, max_edge):
    """Convert a decoded OpenCV image to RGB(A) uint8 bounded by max_edge."""
    tracer = get_tracer()

    if img.dtype == np.uint16:
        img = (img / 257).astype(np.uint8)
    elif img.dtype != np.uint8:
        img = np.clip(img, 0, 255).astype(np.uint8)

    if img.ndim == 2:
        img = cv2.cvtColor(img, cv2.COLOR_GRAY2RGB)
    elif img.shape[2] == 4:
        img = cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)
    else:
        img = cv2.cvtColor(img, cv2.COLOR_BGR2RGB)

    height, width = img.shape[:2]
    if max_edge and max(height, width) > max_edge:
        scale = max_edge / max(height, width)
        new_size = (max(1, int(width * scale)), max(1, int(height * scale)))
        img = cv2.resize(img, new_size, interpolation=cv2.INTER_AREA)
        tracer.event(f"Resized {width}x{height} -> {new_size[0]}x{new_size[1]}")

    return img


@trace(label="load_pixel_buffer")
def load_pixel_buffer(path, max_edge=800):
    """
    Load an image file as a PixelBuffer.

    Alpha is kept when the file has it.

    Raises FileNotFoundError if path does not exist.
    Raises DecodeError if the file cannot be decoded.
    """
    tracer = get_tracer()

    if not os.path.exists(path):
        raise FileNotFoundError(f"Image not found: {path}")

    img = cv2.imread(path, cv2.IMREAD_UNCHANGED)
    if img is None:
        raise DecodeError(f"Failed to decode image: {path}")

    buffer = pixel_buffer_from_array(_to_working_canvas(img, max_edge))
    tracer.event(f"Loaded image: {buffer.width}x{buffer.height}x{buffer.channels}")
    return buffer


@trace(label="decode_pixel_buffer")
def decode_pixel_buffer(data, max_edge=800):
    """Decode encoded image bytes (PNG, JPEG, ...) into a PixelBuffer."""
    if not data:
        raise DecodeError("Empty image data")

    img = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    if img is None:
        raise DecodeError("Failed to decode image data")

    return pixel_buffer_from_array(_to_working_canvas(img, max_edge))
