"""
Artifact saving utilities for inktrace.

Handles writing debug images, JSON files, and rendering SVG to PNG.
"""

import json
import os

import cv2
import numpy as np

from inktrace.tracer import get_tracer


def ensure_dir(path):
    """Create directory if it does not exist."""
    os.makedirs(path, exist_ok=True)


def save_image(img, path, max_edge=None):
    """
    Save an image to disk.

    Optionally downscales to max_edge while preserving aspect ratio.
    Expects RGB or RGBA input and converts for OpenCV.
    """
    tracer = get_tracer()

    if max_edge and max(img.shape[:2]) > max_edge:
        scale = max_edge / max(img.shape[:2])
        new_size = (int(img.shape[1] * scale), int(img.shape[0] * scale))
        img = cv2.resize(img, new_size, interpolation=cv2.INTER_NEAREST)

    if img.ndim == 3 and img.shape[2] == 3:
        img = cv2.cvtColor(img, cv2.COLOR_RGB2BGR)
    elif img.ndim == 3 and img.shape[2] == 4:
        img = cv2.cvtColor(img, cv2.COLOR_RGBA2BGRA)

    ensure_dir(os.path.dirname(path))
    cv2.imwrite(path, img)
    tracer.event(f"Saved image: {path}")


def save_json(data, path, indent=2):
    """Save a dictionary or Pydantic model to JSON."""
    tracer = get_tracer()

    ensure_dir(os.path.dirname(path))

    if hasattr(data, "model_dump"):
        data = data.model_dump(mode="json")

    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent, default=str)

    tracer.event(f"Saved JSON: {path}")


def save_svg(svg_text, path):
    """Save SVG text to file."""
    tracer = get_tracer()

    ensure_dir(os.path.dirname(path))
    with open(path, "w", encoding="utf-8") as f:
        f.write(svg_text)

    tracer.event(f"Saved SVG: {path}")


def render_svg_to_png(svg_path, png_path, dpi=96):
    """
    Render an SVG file to PNG using cairosvg.

    Skipped with a warning when cairosvg is not installed.
    """
    tracer = get_tracer()

    try:
        import cairosvg
    except ImportError:
        tracer.event("cairosvg not available, skipping PNG render", level="WARN")
        return False

    try:
        ensure_dir(os.path.dirname(png_path))
        cairosvg.svg2png(url=svg_path, write_to=png_path, dpi=dpi)
    except Exception as e:
        tracer.event(f"Failed to render SVG: {str(e)}", level="WARN")
        return False

    tracer.event(f"Rendered SVG to PNG: {png_path}")
    return True


def palette_swatch(palette, swatch=48):
    """Render palette entries as a row of RGB squares."""
    strip = np.zeros((swatch, swatch * palette.size, 3), dtype=np.uint8)
    for i, entry in enumerate(palette.entries):
        strip[:, i * swatch:(i + 1) * swatch] = entry.color.as_tuple()
    return strip


def draw_polygons(mask_pixels, polygons, outer_color=(0, 200, 0), hole_color=(220, 0, 0)):
    """Draw traced outlines over a grayscale mask (RGB result)."""
    overlay = cv2.cvtColor(mask_pixels // 2, cv2.COLOR_GRAY2RGB)
    for polygon in polygons:
        pts = np.array(polygon.points, dtype=np.int32)
        color = hole_color if polygon.is_hole else outer_color
        cv2.polylines(overlay, [pts], isClosed=True, color=color, thickness=1)
    return overlay


class DebugArtifactWriter:
    """
    Helper class to manage debug artifact writing for a single run.

    Each stage gets its own subdirectory under <out_dir>/debug/<run_id>/.
    Methods are no-ops when the writer is disabled.
    """

    def __init__(self, out_dir, run_id="run", enabled=True, max_edge=1600):
        self.out_dir = out_dir
        self.run_id = run_id
        self.enabled = enabled
        self.max_edge = max_edge

    def get_stage_dir(self, stage_name):
        """Get the debug directory for a stage, creating it if needed."""
        stage_dir = os.path.join(self.out_dir, "debug", self.run_id, stage_name)
        ensure_dir(stage_dir)
        return stage_dir

    def save_image(self, img, stage_name, filename):
        if not self.enabled:
            return
        save_image(img, os.path.join(self.get_stage_dir(stage_name), filename), max_edge=self.max_edge)

    def save_json(self, data, stage_name, filename):
        if not self.enabled:
            return
        save_json(data, os.path.join(self.get_stage_dir(stage_name), filename))

    def save_svg(self, svg_text, stage_name, filename, render=True):
        """Save an SVG artifact and, if possible, a PNG preview next to it."""
        if not self.enabled:
            return
        path = os.path.join(self.get_stage_dir(stage_name), filename)
        save_svg(svg_text, path)
        if render:
            render_svg_to_png(path, os.path.splitext(path)[0] + ".png")

    def save_palette(self, palette):
        if not self.enabled:
            return
        self.save_image(palette_swatch(palette), "palette", "swatches.png")
        self.save_json(palette, "palette", "palette.json")

    def save_mask(self, mask, stage_name, filename):
        if not self.enabled:
            return
        self.save_image(mask.pixels, stage_name, filename)

    def save_polygons(self, mask, polygons, filename):
        if not self.enabled:
            return
        self.save_image(draw_polygons(mask.pixels, polygons), "contours", filename)
