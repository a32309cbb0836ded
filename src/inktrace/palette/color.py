"""
Perceptual color distance.

All color comparisons in the pipeline use one metric: Euclidean distance
with the luma weights 0.30/0.59/0.11 on the R, G and B differences. The
largest possible distance (black to white) is 255.
"""

import numpy as np


CHANNEL_WEIGHTS = np.array([0.30, 0.59, 0.11], dtype=np.float64)


def perceptual_distance(a, b):
    """Distance between two RGB triples (or Color models)."""
    if hasattr(a, "as_tuple"):
        a = a.as_tuple()
    if hasattr(b, "as_tuple"):
        b = b.as_tuple()
    diff = np.asarray(a, dtype=np.float64)[:3] - np.asarray(b, dtype=np.float64)[:3]
    return float(np.sqrt(np.sum(CHANNEL_WEIGHTS * diff * diff)))


def perceptual_distance_sq(pixels, color):
    """
    Squared distance from every pixel to one color.

    Args:
        pixels: (..., 3) array of RGB values, any numeric dtype
        color: RGB triple

    Returns:
        float64 array with the leading shape of pixels
    """
    diff = pixels[..., :3].astype(np.float64) - np.asarray(color, dtype=np.float64)[:3]
    return np.sum(diff * diff * CHANNEL_WEIGHTS, axis=-1)


def nearest_contrast(color):
    """Black or white, whichever is farther from color."""
    black = (0, 0, 0)
    white = (255, 255, 255)
    if perceptual_distance(color, black) >= perceptual_distance(color, white):
        return black
    return white
