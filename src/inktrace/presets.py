"""
Quality and content-type presets.

A quality preset trades output fidelity against document size; a content
type tunes the color budget to what the image shows. Both are applied on
top of a PipelineConfig and never mutate the one passed in.
"""

import copy

import numpy as np

from inktrace.config import clamp_max_colors
from inktrace.tracer import get_tracer


QUALITY_PRESETS = {
    "draft": {
        "source": {"max_edge": 400},
        "simplify": {"rdp_epsilon": 2.0},
        "bezier": {"error_tolerance": 2.0},
        "contour": {"minimum_area": 150},
        "corners": {"threshold_degrees": 60.0},
    },
    "standard": {
        "source": {"max_edge": 800},
        "simplify": {"rdp_epsilon": 1.0},
        "bezier": {"error_tolerance": 1.0},
        "contour": {"minimum_area": 100},
        "corners": {"threshold_degrees": 45.0},
    },
    "premium": {
        "source": {"max_edge": 1200},
        "simplify": {"rdp_epsilon": 0.75},
        "bezier": {"error_tolerance": 0.5},
        "contour": {"minimum_area": 50},
        "corners": {"threshold_degrees": 35.0},
    },
    "ultra": {
        "source": {"max_edge": 1600},
        "simplify": {"rdp_epsilon": 0.5},
        "bezier": {"error_tolerance": 0.25},
        "contour": {"minimum_area": 25},
        "corners": {"threshold_degrees": 30.0},
    },
    # screen-printing separations
    "silkscreen": {
        "source": {"max_edge": 800},
        "palette": {"max_colors": 5},
        "simplify": {"rdp_epsilon": 1.0},
        "bezier": {"error_tolerance": 1.0},
        "contour": {"minimum_area": 50},
        "corners": {"threshold_degrees": 45.0},
    },
}

# Rendered side by side by generate_previews
PREVIEW_QUALITIES = ("draft", "standard", "premium")

CONTENT_TYPES = {
    "logo": {"palette": {"max_colors": 4}, "mask": {"tolerance_mode": "fixed"}},
    "photo": {"palette": {"max_colors": 12}, "mask": {"tolerance_mode": "adaptive"}},
    "artwork": {"palette": {"max_colors": 8}, "mask": {"tolerance_mode": "adaptive"}},
    "text": {"palette": {"max_colors": 2}, "mask": {"tolerance_mode": "fixed"}},
}


def detect_content_type(buffer):
    """
    Guess what kind of picture a buffer holds.

    Heuristics, checked in order:
    - text: bright, low-variance first channel (dark glyphs on paper)
    - logo: strongly non-square canvas
    - photo: large canvas on both axes
    - artwork: everything else

    Args:
        buffer: PixelBuffer

    Returns:
        one of the CONTENT_TYPES keys
    """
    tracer = get_tracer()

    arr = buffer.as_array()
    channel = arr[:, :, 0].astype(np.float64)
    mean = float(channel.mean())
    std = float(channel.std())
    aspect = buffer.width / max(buffer.height, 1)

    if mean > 200 and std < 50:
        content_type = "text"
    elif aspect > 2 or aspect < 0.5:
        content_type = "logo"
    elif buffer.width > 1500 and buffer.height > 1500:
        content_type = "photo"
    else:
        content_type = "artwork"

    tracer.event(f"Detected content type: {content_type}", mean=round(mean, 1), std=round(std, 1))
    return content_type


def _apply_overrides(config, overrides):
    for section, values in overrides.items():
        target = getattr(config, section)
        for key, value in values.items():
            setattr(target, key, value)


def apply_preset(config, quality=None, content_type=None):
    """
    Return a copy of config with the named presets applied.

    Quality is applied first, so a content type's color budget wins over
    the silkscreen color count.

    Raises ValueError for an unknown preset name.
    """
    tracer = get_tracer()

    if quality is not None and quality not in QUALITY_PRESETS:
        raise ValueError(f"Unknown quality preset {quality!r}; expected one of {sorted(QUALITY_PRESETS)}")
    if content_type is not None and content_type not in CONTENT_TYPES:
        raise ValueError(f"Unknown content type {content_type!r}; expected one of {sorted(CONTENT_TYPES)}")

    result = copy.deepcopy(config)
    if quality is not None:
        _apply_overrides(result, QUALITY_PRESETS[quality])
    if content_type is not None:
        _apply_overrides(result, CONTENT_TYPES[content_type])

    result.palette.max_colors = clamp_max_colors(result.palette.max_colors, result)
    tracer.event(f"Applied presets quality={quality} content_type={content_type}")
    return result
