"""Tests for budgeted SVG assembly and document validation."""

import re

import pytest

from inktrace.export.svg_budget import assemble_document, format_number, path_data
from inktrace.models import (
    Color, ColorLayer, DiagnosticKind, PaletteEntry, PathSegment, SegmentKind, SubPath, VectorPath,
)
from inktrace.tracer import Telemetry
from inktrace.validate.rules import anchor_points, run_validation


def _entry(hex_rgb, index, weight=0.5):
    color = Color(r=int(hex_rgb[1:3], 16), g=int(hex_rgb[3:5], 16), b=int(hex_rgb[5:7], 16))
    return PaletteEntry(color=color, weight=weight, index=index)


def _square_path(x, y, size, fill="#ff0000", path_id=None, jitter=0.0):
    corners = [[x, y], [x + size, y], [x + size, y + size], [x, y + size]]
    corners = [[cx + jitter, cy + jitter] for cx, cy in corners]
    segments = [
        PathSegment(kind=SegmentKind.LINE, points=[corners[i], corners[(i + 1) % 4]])
        for i in range(4)
    ]
    return VectorPath(
        path_id=path_id or f"path_{x}_{y}_{size}",
        fill=fill,
        subpaths=[SubPath(segments=segments, corner_count=4)],
        area=float(size * size),
        perimeter=float(4 * size),
    )


def _layer(hex_rgb, index, paths):
    return ColorLayer(entry=_entry(hex_rgb, index), paths=paths)


class TestFormatting:
    """Tests for path data formatting."""

    def test_format_number(self):
        assert format_number(3.14159, 2) == "3.14"
        assert format_number(2.5000, 2) == "2.5"
        assert format_number(7.0, 2) == "7"
        assert format_number(-0.001, 2) == "0"
        assert format_number(12.6, 0) == "13"

    def test_path_data_closed(self):
        d = path_data(_square_path(0, 0, 10), 2)
        assert d == "M0 0 L10 0 L10 10 L0 10 L0 0 Z"

    def test_cubic_path_data(self):
        segment = PathSegment(
            kind=SegmentKind.CUBIC,
            points=[[0, 0], [1.234, 2], [3, 4.5], [5, 0]],
        )
        path = VectorPath(path_id="p", fill="#000000", subpaths=[SubPath(segments=[segment])])
        assert path_data(path, 1) == "M0 0 C1.2 2 3 4.5 5 0 Z"


class TestAssembleDocument:
    """Tests for document assembly under budgets."""

    def test_groups_and_metadata(self, default_config):
        layers = [
            _layer("#ffffff", 0, [_square_path(0, 0, 50)]),
            _layer("#ff0000", 1, [_square_path(10, 10, 20), _square_path(60, 60, 20)]),
            _layer("#0000ff", 2, []),
        ]
        doc = assemble_document(layers, 100, 100, default_config, palette_size=3)

        assert doc.svg.startswith("<?xml")
        assert doc.svg.count("<g ") == 2
        assert 'fill-rule="evenodd"' in doc.svg
        assert 'data-palette-size="3"' in doc.svg
        assert 'data-fallback-mode="false"' in doc.svg
        assert "<title>" in doc.svg
        assert doc.path_count == 3
        assert doc.layer_path_counts == {"#ffffff": 1, "#ff0000": 2}
        assert doc.byte_size == len(doc.svg.encode("utf-8"))

    def test_layers_keep_palette_order(self, default_config):
        layers = [
            _layer("#ffffff", 0, [_square_path(0, 0, 50)]),
            _layer("#ff0000", 1, [_square_path(10, 10, 20)]),
        ]
        doc = assemble_document(layers, 100, 100, default_config)
        assert doc.svg.index('id="ink-1"') < doc.svg.index('id="ink-2"')

    def test_per_layer_cap(self, default_config):
        default_config.budget.max_paths_per_layer = 2
        telemetry = Telemetry()
        layers = [
            _layer("#ff0000", 0, [_square_path(i * 10, 0, 5 + i) for i in range(5)]),
            _layer("#0000ff", 1, [_square_path(0, 50, 10)]),
        ]
        doc = assemble_document(layers, 100, 100, default_config, telemetry=telemetry)

        assert doc.layer_path_counts == {"#ff0000": 2, "#0000ff": 1}
        # simplest (shortest perimeter) first
        assert 'id="path_0_0_5"' in doc.svg
        assert 'id="path_10_0_6"' in doc.svg
        assert telemetry.of_kind(DiagnosticKind.BUDGET_EXCEEDED)

    def test_total_cap_stops_all_layers(self, default_config):
        default_config.budget.max_total_paths = 3
        layers = [
            _layer("#ff0000", 0, [_square_path(i * 10, 0, 5) for i in range(3)]),
            _layer("#0000ff", 1, [_square_path(0, 50, 10)]),
        ]
        doc = assemble_document(layers, 100, 100, default_config)

        assert doc.path_count == 3
        assert doc.layer_path_counts == {"#ff0000": 3}

    def test_byte_budget_respected(self, default_config):
        layers = [_layer("#ff0000", 0, [_square_path(i, i, 30 + i, jitter=0.123) for i in range(60)])]
        unbounded = assemble_document(layers, 200, 200, default_config)

        default_config.budget.max_document_bytes = unbounded.byte_size // 2
        telemetry = Telemetry()
        doc = assemble_document(layers, 200, 200, default_config, telemetry=telemetry)

        assert doc.byte_size <= default_config.budget.max_document_bytes
        assert 0 < doc.path_count < 60
        assert telemetry.of_kind(DiagnosticKind.BUDGET_EXCEEDED)

    def test_emergency_pass_lowers_precision(self, default_config, monkeypatch):
        import inktrace.export.svg_budget as svg_budget

        layers = [_layer("#ff0000", 0, [_square_path(i, i, 30, jitter=0.456) for i in range(20)])]
        full = assemble_document(layers, 200, 200, default_config)
        assert full.precision == 2

        def admit_all(layers, *args):
            return [(layer.entry, list(layer.paths)) for layer in layers], 0

        # skip admission so only the emergency pass can shrink the document
        monkeypatch.setattr(svg_budget, "admit_paths", admit_all)
        default_config.budget.max_document_bytes = full.byte_size - 20
        telemetry = Telemetry()
        doc = svg_budget.assemble_document(layers, 200, 200, default_config, telemetry=telemetry)

        assert doc.byte_size <= default_config.budget.max_document_bytes
        assert doc.precision < 2
        assert doc.path_count == 20
        assert telemetry.of_kind(DiagnosticKind.BUDGET_EXCEEDED)

    def test_empty_document(self, default_config):
        doc = assemble_document([], 40, 30, default_config, palette_size=1, fallback_mode=True)
        assert doc.path_count == 0
        assert 'data-fallback-mode="true"' in doc.svg
        assert "<g" not in doc.svg


class TestValidation:
    """Tests for document validation checks."""

    def _document(self, config):
        layers = [
            _layer("#ffffff", 0, [_square_path(0, 0, 50)]),
            _layer("#ff0000", 1, [_square_path(10, 10, 20), _square_path(60, 60, 20)]),
        ]
        return assemble_document(layers, 100, 100, config, palette_size=2)

    def test_clean_document_passes(self, default_config):
        report = run_validation(self._document(default_config), default_config)
        assert not report.has_errors
        assert report.warning_count == 0

    def test_budget_violation_flagged(self, default_config):
        doc = self._document(default_config)
        default_config.budget.max_paths_per_layer = 1
        default_config.budget.max_total_paths = 2
        report = run_validation(doc, default_config)

        failed = {c.rule_id for c in report.checks if not c.passed}
        assert failed == {"layer_budget", "total_paths"}
        assert report.error_count == 2

    def test_fallback_violations_are_warnings(self, default_config):
        doc = self._document(default_config).model_copy(update={"fallback_mode": True})
        default_config.budget.max_total_paths = 2
        report = run_validation(doc, default_config)
        assert not report.has_errors
        assert report.warning_count == 1

    def test_anchor_points(self):
        assert anchor_points("M0 0 L10 0 C1 2 3 4 5 6 Z") == [(0.0, 0.0), (10.0, 0.0), (5.0, 6.0)]

    def test_canvas_matches(self, default_config):
        doc = self._document(default_config)
        assert re.search(r'viewBox="0[ ,]0[ ,]100[ ,]100"', doc.svg)
        canvas = next(c for c in run_validation(doc, default_config).checks if c.rule_id == "canvas")
        assert canvas.passed
