"""
Morphological mask cleanup.

Opening removes isolated speckles and thin spurs; the pixels beyond the
canvas edge count as background in both passes, so regions touching the
border keep their extent. Components still below the minimum area are then
cleared so they never reach the tracer.
"""

import cv2
import numpy as np

from inktrace.models import Mask
from inktrace.tracer import get_tracer, trace


def _morph(pixels, op, kernel, iterations):
    return op(
        pixels,
        kernel,
        iterations=iterations,
        borderType=cv2.BORDER_CONSTANT,
        borderValue=0,
    )


def open_mask(pixels, kernel_size, iterations):
    """Erode then dilate with a square kernel."""
    if iterations <= 0:
        return pixels
    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (kernel_size, kernel_size))
    eroded = _morph(pixels, cv2.erode, kernel, iterations)
    return _morph(eroded, cv2.dilate, kernel, iterations)


def close_mask(pixels, kernel_size, iterations):
    """Dilate then erode with a square kernel."""
    if iterations <= 0:
        return pixels
    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (kernel_size, kernel_size))
    dilated = _morph(pixels, cv2.dilate, kernel, iterations)
    return _morph(dilated, cv2.erode, kernel, iterations)


def remove_small_components(pixels, minimum_area):
    """
    Clear 8-connected foreground components smaller than minimum_area.

    Returns:
        (cleaned pixels, number of components removed)
    """
    if minimum_area <= 1:
        return pixels, 0

    num_labels, labels, stats, _ = cv2.connectedComponentsWithStats(pixels, connectivity=8)
    small = np.flatnonzero(stats[1:, cv2.CC_STAT_AREA] < minimum_area) + 1
    if len(small) == 0:
        return pixels, 0

    cleaned = pixels.copy()
    cleaned[np.isin(labels, small)] = 0
    return cleaned, len(small)


@trace(label="refine_mask")
def refine_mask(mask, config):
    """
    Clean a mask with opening, optional closing and an area filter.

    Args:
        mask: Mask from build_mask
        config: PipelineConfig (refine and contour sections)

    Returns:
        new Mask for the same entry; unchanged if refinement is disabled
    """
    tracer = get_tracer()
    refine = config.refine

    before = mask.foreground_count
    pixels = open_mask(mask.pixels, refine.kernel_size, refine.iterations)
    pixels = close_mask(pixels, refine.kernel_size, refine.close_iterations)
    pixels, removed = remove_small_components(pixels, config.contour.minimum_area)

    refined = Mask(entry=mask.entry, pixels=pixels, tolerance=mask.tolerance)
    tracer.event(
        f"Refined {mask.entry.color.hex}: {before} -> {refined.foreground_count} px, "
        f"{removed} small components removed"
    )
    return refined
