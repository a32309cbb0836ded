"""Tests for mask building and refinement."""

import numpy as np
import pytest

from inktrace.io.pixel_source import pixel_buffer_from_array
from inktrace.models import Color, DiagnosticKind, Mask, PaletteEntry
from inktrace.palette.color import perceptual_distance
from inktrace.segment.mask_build import build_mask, color_tolerance
from inktrace.segment.mask_refine import open_mask, refine_mask, remove_small_components
from inktrace.tracer import Telemetry


def _entry(rgb, weight=0.5, reserved=False, index=0):
    return PaletteEntry(color=Color.from_rgb(rgb), weight=weight, index=index, reserved=reserved)


class TestColorTolerance:
    """Tests for the tolerance radius of a palette color."""

    def test_fixed_mode(self, default_config):
        default_config.mask.tolerance_mode = "fixed"
        assert color_tolerance(Color.from_rgb((10, 200, 90)), default_config.mask) == 48.0

    def test_saturated_mid_tone(self, default_config):
        # mid base 40 + high saturation bonus 12
        assert color_tolerance(Color.from_rgb((255, 0, 0)), default_config.mask) == 52.0

    def test_neutral_light(self, default_config):
        # light base 45 + low saturation bonus 15
        assert color_tolerance(Color.from_rgb((255, 255, 255)), default_config.mask) == 60.0

    def test_neutral_dark(self, default_config):
        assert color_tolerance(Color.from_rgb((0, 0, 0)), default_config.mask) == 65.0


class TestBuildMask:
    """Tests for per-color thresholding."""

    def test_red_square_coverage(self, red_square_buffer, default_config):
        mask = build_mask(red_square_buffer, _entry((255, 0, 0), weight=0.25), default_config)

        assert mask is not None
        assert mask.pixels.shape == (400, 400)
        assert mask.coverage == pytest.approx(0.25)

    def test_foreground_within_tolerance(self, default_config):
        rng = np.random.default_rng(3)
        img = rng.integers(0, 256, size=(40, 40, 3)).astype(np.uint8)
        entry = _entry((120, 120, 120), weight=0.01)
        default_config.mask.significance_ratio = 0.0
        default_config.mask.min_coverage = 0.0

        mask = build_mask(pixel_buffer_from_array(img), entry, default_config)
        assert mask is not None

        ys, xs = np.nonzero(mask.pixels)
        for y, x in zip(ys, xs):
            assert perceptual_distance(img[y, x], (120, 120, 120)) <= mask.tolerance
        background = np.argwhere(mask.pixels == 0)
        for y, x in background:
            assert perceptual_distance(img[y, x], (120, 120, 120)) > mask.tolerance

    def test_transparent_pixels_excluded(self, default_config):
        img = np.zeros((20, 20, 4), dtype=np.uint8)
        img[:, :, 0] = 255
        img[:, :10, 3] = 255
        mask = build_mask(pixel_buffer_from_array(img), _entry((255, 0, 0)), default_config)

        assert mask is not None
        assert mask.pixels[:, :10].all()
        assert not mask.pixels[:, 10:].any()

    def test_insignificant_mask_rejected(self, red_square_buffer, default_config):
        telemetry = Telemetry()
        default_config.mask.min_coverage = 0.5
        mask = build_mask(red_square_buffer, _entry((255, 0, 0), weight=0.25), default_config, telemetry)

        assert mask is None
        rejected = telemetry.of_kind(DiagnosticKind.MASK_REJECTED)
        assert len(rejected) == 1
        assert rejected[0].evidence["color"] == "#ff0000"

    def test_reserved_entry_skips_significance(self, red_square_buffer, default_config):
        default_config.mask.min_coverage = 0.5
        mask = build_mask(red_square_buffer, _entry((255, 0, 0), reserved=True), default_config)
        assert mask is not None

    def test_empty_mask_rejected_even_if_reserved(self, red_square_buffer, default_config):
        mask = build_mask(red_square_buffer, _entry((0, 0, 0), reserved=True), default_config)
        assert mask is None


class TestRefineMask:
    """Tests for morphological cleanup."""

    def _mask(self, pixels):
        return Mask(entry=_entry((0, 0, 0)), pixels=pixels, tolerance=50.0)

    def test_full_mask_keeps_border(self, default_config):
        pixels = np.full((30, 40), 255, dtype=np.uint8)
        refined = refine_mask(self._mask(pixels), default_config)
        assert refined.coverage == 1.0

    def test_speckles_removed(self, default_config):
        pixels = np.zeros((60, 60), dtype=np.uint8)
        pixels[5:8, 5:8] = 255
        pixels[30:32, 40:42] = 255
        pixels[50, 10] = 255
        refined = refine_mask(self._mask(pixels), default_config)
        assert refined.foreground_count == 0

    def test_large_region_survives(self, default_config):
        pixels = np.zeros((60, 60), dtype=np.uint8)
        pixels[10:40, 10:40] = 255
        refined = refine_mask(self._mask(pixels), default_config)
        assert refined.foreground_count == 900

    def test_opening_disabled(self):
        pixels = np.zeros((10, 10), dtype=np.uint8)
        pixels[5, 5] = 255
        assert open_mask(pixels, 3, 0) is pixels

    def test_remove_small_components_counts(self):
        pixels = np.zeros((20, 20), dtype=np.uint8)
        pixels[0:2, 0:2] = 255
        pixels[10:18, 10:18] = 255
        cleaned, removed = remove_small_components(pixels, 25)
        assert removed == 1
        assert cleaned[0:2, 0:2].sum() == 0
        assert np.count_nonzero(cleaned) == 64
