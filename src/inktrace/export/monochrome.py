"""
Monochrome trace, the terminal fallback of the pipeline.

Thresholds the whole image into a single ink and runs it through the same
refine, trace and simplify stages as a palette color.
"""

from inktrace.contours.moore_trace import trace_mask
from inktrace.models import Color, ColorLayer, Mask, PaletteEntry
from inktrace.paths.simplify import simplify_polygons
from inktrace.segment.binarize import binarize
from inktrace.segment.mask_refine import refine_mask
from inktrace.tracer import Telemetry, get_tracer, trace


def _ink_entry(fill, coverage, pixel_count):
    hex_value = fill.lstrip("#")
    color = Color(r=int(hex_value[0:2], 16), g=int(hex_value[2:4], 16), b=int(hex_value[4:6], 16))
    return PaletteEntry(color=color, weight=min(1.0, max(coverage, 1.0 / pixel_count)), index=0, reserved=True)


@trace(label="monochrome_trace")
def monochrome_trace(buffer, config, telemetry=None):
    """
    Trace the image as one ink.

    Returns:
        ColorLayer with the monochrome fill; its path list may be empty
    """
    tracer = get_tracer()
    telemetry = telemetry or Telemetry()

    binary = binarize(buffer, config.monochrome)
    pixel_count = binary.size
    coverage = float((binary > 0).sum()) / pixel_count

    entry = _ink_entry(config.monochrome.fill, coverage, pixel_count)
    mask = refine_mask(Mask(entry=entry, pixels=binary, tolerance=0.0), config)
    polygons = trace_mask(mask, config)
    paths = simplify_polygons(polygons, entry, config, telemetry)

    tracer.event(f"Monochrome trace: coverage={coverage:.3f}, {len(paths)} paths")
    return ColorLayer(entry=entry, paths=paths, coverage=mask.coverage)
