"""
Per-color mask construction.

A pixel belongs to an ink's mask when it is visible and lies within that
ink's color tolerance under the perceptual metric. Tolerance is either one
fixed radius or adapted to the brightness and saturation of the ink.
"""

import numpy as np

from inktrace.models import DiagnosticKind, Mask
from inktrace.palette.color import perceptual_distance_sq
from inktrace.tracer import Telemetry, get_tracer, trace


def color_tolerance(color, mask_config):
    """
    Tolerance radius for one palette color.

    Adaptive mode: dark and light inks get a wider base than mid tones,
    and strongly saturated or nearly neutral inks get a bonus on top.
    """
    if mask_config.tolerance_mode == "fixed":
        return float(mask_config.fixed_tolerance)

    brightness = color.brightness
    if brightness < mask_config.dark_brightness:
        tolerance = mask_config.dark_tolerance
    elif brightness > mask_config.light_brightness:
        tolerance = mask_config.light_tolerance
    else:
        tolerance = mask_config.mid_tolerance

    saturation = color.saturation
    if saturation > mask_config.high_saturation:
        tolerance += mask_config.high_saturation_bonus
    elif saturation < mask_config.low_saturation:
        tolerance += mask_config.low_saturation_bonus

    return float(tolerance)


def threshold_pixels(arr, color, tolerance, alpha_floor):
    """
    Binary 0/255 mask of the pixels within tolerance of color.

    Args:
        arr: (H, W, C) uint8 array, C is 3 or 4
        color: Color
        tolerance: distance threshold (inclusive)
        alpha_floor: minimum alpha for a pixel to count

    Returns:
        (H, W) uint8 array
    """
    inside = perceptual_distance_sq(arr, color.as_tuple()) <= tolerance * tolerance
    if arr.shape[2] == 4:
        inside &= arr[:, :, 3] >= alpha_floor
    return np.where(inside, 255, 0).astype(np.uint8)


@trace(label="build_mask")
def build_mask(buffer, entry, config, telemetry=None):
    """
    Build the occupancy mask of one palette entry.

    Returns:
        Mask, or None when the mask is empty or covers less than the
        significance threshold (reserved contrast inks skip the threshold)
    """
    tracer = get_tracer()
    telemetry = telemetry or Telemetry()
    mask_config = config.mask

    tolerance = color_tolerance(entry.color, mask_config)
    pixels = threshold_pixels(buffer.as_array(), entry.color, tolerance, mask_config.alpha_floor)
    mask = Mask(entry=entry, pixels=pixels, tolerance=tolerance)

    coverage = mask.coverage
    required = max(mask_config.min_coverage, mask_config.significance_ratio * entry.weight)
    tracer.event(f"Mask {entry.color.hex}: tolerance={tolerance:.1f} coverage={coverage:.4f}")

    if mask.foreground_count == 0 or (coverage < required and not entry.reserved):
        telemetry.record(
            DiagnosticKind.MASK_REJECTED,
            "mask",
            f"Mask for {entry.color.hex} rejected",
            level="INFO",
            color=entry.color.hex,
            coverage=round(coverage, 6),
            required=round(required, 6),
        )
        return None

    return mask
