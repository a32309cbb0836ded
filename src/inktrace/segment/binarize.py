"""
Global binarization for the monochrome trace.

Composites the image over white, converts it to grayscale and thresholds
it so that dark ink becomes foreground (255) on a background of 0.
"""

import cv2
import numpy as np

from inktrace.tracer import get_tracer, trace


def composite_gray(buffer):
    """Grayscale uint8 view of a buffer with any alpha flattened onto white."""
    arr = buffer.as_array()
    rgb = arr[:, :, :3].astype(np.float64)

    if buffer.has_alpha:
        alpha = arr[:, :, 3:4].astype(np.float64) / 255.0
        rgb = rgb * alpha + 255.0 * (1.0 - alpha)

    rgb = np.clip(np.round(rgb), 0, 255).astype(np.uint8)
    return cv2.cvtColor(rgb, cv2.COLOR_RGB2GRAY)


@trace(label="binarize")
def binarize(buffer, monochrome_config):
    """
    Threshold a buffer into an ink mask.

    Uses Otsu's method or a fixed threshold. A flat image (gray range below
    min_contrast) has no threshold to find: it is all ink when dark,
    otherwise empty.

    Returns:
        (H, W) uint8 binary image, ink = 255
    """
    tracer = get_tracer()

    with tracer.span("grayscale", module="binarize"):
        gray = composite_gray(buffer)

    low, high = int(gray.min()), int(gray.max())
    if high - low < monochrome_config.min_contrast:
        ink = gray.mean() < 128
        tracer.event(f"Flat image (range {high - low}), ink={ink}")
        return np.full(gray.shape, 255 if ink else 0, dtype=np.uint8)

    with tracer.span("threshold", module="binarize"):
        if monochrome_config.method == "fixed":
            threshold, binary = cv2.threshold(
                gray,
                monochrome_config.threshold,
                255,
                cv2.THRESH_BINARY_INV,
            )
        else:
            # Otsu's method (default)
            threshold, binary = cv2.threshold(
                gray,
                0,
                255,
                cv2.THRESH_BINARY_INV + cv2.THRESH_OTSU,
            )

    ink_ratio = np.count_nonzero(binary) / binary.size
    tracer.event(f"Threshold {monochrome_config.method}={threshold:.0f} ink_ratio={ink_ratio:.3f}")
    return binary
