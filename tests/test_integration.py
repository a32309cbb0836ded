"""Integration tests for the full pipeline."""

import os

import cv2
import numpy as np
import pytest

from inktrace.errors import DecodeError
from inktrace.io.pixel_source import pixel_buffer_from_array
from inktrace.models import DiagnosticKind, PipelineState
from inktrace.pipeline import PipelineRun, generate_previews, process_color, vectorize, vectorize_batch
from inktrace.tracer import Telemetry
from inktrace.validate.rules import anchor_points


def _paths_by_group(svg):
    """{fill: [d, ...]} parsed from the SVG text."""
    import xml.etree.ElementTree as ET

    ns = "{http://www.w3.org/2000/svg}"
    root = ET.fromstring(svg.split("?>", 1)[-1].strip())
    return {
        group.get("fill"): [p.get("d") for p in group.iter(f"{ns}path")]
        for group in root.iter(f"{ns}g")
    }


class TestScenarios:
    """End-to-end behaviour on synthetic images."""

    def test_red_square_on_white(self, red_square_buffer, default_config):
        doc = vectorize(red_square_buffer, default_config, options={"maxColors": 2})

        groups = _paths_by_group(doc.svg)
        assert set(groups) == {"#ffffff", "#ff0000"}
        assert len(groups["#ff0000"]) == 1
        assert doc.layer_path_counts == {"#ffffff": 1, "#ff0000": 1}
        assert not doc.fallback_mode
        assert doc.palette_size == 2

        red_d = groups["#ff0000"][0]
        assert red_d.count("M") == 1 and red_d.endswith("Z")
        assert set(anchor_points(red_d)) == {(100.0, 100.0), (299.0, 100.0), (299.0, 299.0), (100.0, 299.0)}

        # white outline carries the square as a hole
        assert groups["#ffffff"][0].count("M") == 2
        assert doc.states[-1] == PipelineState.DONE
        assert not doc.validation.has_errors

    def test_red_square_corners_and_coverage(self, red_square_buffer, default_config):
        from inktrace.palette.extract import extract_palette

        default_config.palette.max_colors = 2
        palette = extract_palette(red_square_buffer, default_config)
        red = next(e for e in palette.entries if e.color.hex == "#ff0000")

        result = process_color(red_square_buffer, red, default_config, Telemetry())

        assert result.coverage == pytest.approx(0.25, abs=0.01)
        assert len(result.paths) == 1
        assert result.paths[0].corner_count == 4

    def test_flat_gray(self, flat_gray_buffer, default_config):
        doc = vectorize(flat_gray_buffer, default_config)

        assert doc.palette_size in (1, 2)
        assert doc.path_count == 1
        d = _paths_by_group(doc.svg)["#808080"][0]
        assert set(anchor_points(d)) == {(0.0, 0.0), (119.0, 0.0), (119.0, 89.0), (0.0, 89.0)}
        assert doc.diagnostics_of(DiagnosticKind.DEGENERATE_INPUT)

    def test_speckles_removed(self, speckle_buffer, default_config):
        from inktrace.palette.extract import extract_palette

        palette = extract_palette(speckle_buffer, default_config)
        doc = vectorize(speckle_buffer, default_config)

        assert doc.layer_path_counts == {palette.entries[0].color.hex: 1}
        for entry in palette.entries[1:]:
            result = process_color(speckle_buffer, entry, default_config, Telemetry())
            assert result.polygons == []

    def test_fully_transparent_rejected(self, transparent_buffer, default_config):
        with pytest.raises(DecodeError):
            vectorize(transparent_buffer, default_config)

    def test_malformed_buffer_rejected(self, default_config):
        from inktrace.models import PixelBuffer

        buffer = PixelBuffer(width=10, height=10, channels=3, data=b"\x00" * 12)
        with pytest.raises(DecodeError):
            vectorize(buffer, default_config)


class TestDeterminism:
    """Repeat runs give the same document."""

    def test_idempotent(self, four_color_buffer, default_config):
        first = vectorize(four_color_buffer, default_config)
        second = vectorize(four_color_buffer, default_config)

        assert first.layer_path_counts == second.layer_path_counts
        assert first.svg == second.svg

    def test_worker_count_does_not_change_output(self, four_color_buffer, default_config):
        default_config.workers.max_workers = 1
        inline = vectorize(four_color_buffer, default_config)
        default_config.workers.max_workers = 4
        pooled = vectorize(four_color_buffer, default_config)

        assert inline.svg == pooled.svg


class TestFallback:
    """Runs that end in the monochrome trace."""

    def test_no_masks_falls_back(self, red_square_buffer, default_config, monkeypatch):
        import inktrace.pipeline as pipeline

        monkeypatch.setattr(pipeline, "build_mask", lambda *args, **kwargs: None)
        doc = pipeline.vectorize(red_square_buffer, default_config)

        assert doc.fallback_mode
        assert 'data-fallback-mode="true"' in doc.svg
        assert doc.layer_path_counts == {"#000000": 1}
        assert doc.states[-3:] == [PipelineState.MASKING, PipelineState.FALLBACK, PipelineState.DONE]
        assert doc.diagnostics_of(DiagnosticKind.EMPTY_RESULT)

    def test_nothing_traceable(self, red_square_buffer, default_config):
        doc = vectorize(red_square_buffer, default_config, options={"minimumArea": 10_000_000})

        assert doc.fallback_mode
        assert doc.path_count == 0
        assert PipelineState.TRACING in doc.states
        assert doc.states[-2:] == [PipelineState.FALLBACK, PipelineState.DONE]
        assert not doc.validation.has_errors

    def test_worker_failure_drops_color(self, red_square_buffer, default_config, monkeypatch):
        import inktrace.pipeline as pipeline

        original = pipeline.refine_mask

        def flaky(mask, config):
            if mask.entry.color.hex == "#ff0000":
                raise RuntimeError("refine exploded")
            return original(mask, config)

        monkeypatch.setattr(pipeline, "refine_mask", flaky)
        doc = pipeline.vectorize(red_square_buffer, default_config, options={"maxColors": 2})

        assert doc.layer_path_counts == {"#ffffff": 1}
        failures = doc.diagnostics_of(DiagnosticKind.STAGE_FAILED)
        assert len(failures) == 1
        assert failures[0].evidence["color"] == "#ff0000"

    def test_broken_monochrome_trace_still_completes(self, red_square_buffer, default_config, monkeypatch):
        import inktrace.pipeline as pipeline

        def broken(*args, **kwargs):
            raise RuntimeError("binarize exploded")

        monkeypatch.setattr(pipeline, "build_mask", lambda *args, **kwargs: None)
        monkeypatch.setattr(pipeline, "monochrome_trace", broken)
        doc = pipeline.vectorize(red_square_buffer, default_config)

        assert doc.fallback_mode
        assert doc.path_count == 0
        assert doc.states[-2:] == [PipelineState.FALLBACK, PipelineState.DONE]
        failures = doc.diagnostics_of(DiagnosticKind.STAGE_FAILED)
        assert [d.stage for d in failures] == ["fallback"]
        assert "binarize exploded" in failures[0].message

    def test_single_pixel_hole_in_fallback(self, default_config, monkeypatch):
        import inktrace.pipeline as pipeline

        img = np.full((20, 20, 3), 255, dtype=np.uint8)
        img[3:17, 3:17] = 0
        img[9, 9] = 255
        default_config.contour.minimum_area = 1
        default_config.contour.min_vertices = 1

        monkeypatch.setattr(pipeline, "build_mask", lambda *args, **kwargs: None)
        doc = pipeline.vectorize(pixel_buffer_from_array(img), default_config)

        assert doc.fallback_mode
        assert doc.layer_path_counts == {"#000000": 1}
        assert not doc.diagnostics_of(DiagnosticKind.STAGE_FAILED)


class TestPipelineRun:
    """Tests for the run state machine."""

    def test_happy_path(self):
        run = PipelineRun()
        for state in (
            PipelineState.PALETTE, PipelineState.MASKING, PipelineState.REFINING,
            PipelineState.TRACING, PipelineState.SIMPLIFYING, PipelineState.ASSEMBLING,
            PipelineState.DONE,
        ):
            run.advance(state)
        assert run.states[0] == PipelineState.INIT
        assert run.state == PipelineState.DONE

    def test_illegal_transition(self):
        run = PipelineRun()
        with pytest.raises(RuntimeError):
            run.advance(PipelineState.TRACING)

    def test_fallback_only_from_allowed_states(self):
        run = PipelineRun()
        run.advance(PipelineState.PALETTE)
        with pytest.raises(RuntimeError):
            run.advance(PipelineState.FALLBACK)


class TestArtifacts:
    """Debug output and the CLI."""

    def test_debug_artifacts(self, red_square_buffer, default_config, temp_dir):
        from inktrace.io.save_artifacts import DebugArtifactWriter

        writer = DebugArtifactWriter(temp_dir, "square")
        vectorize(red_square_buffer, default_config, options={"maxColors": 2}, debug_writer=writer)

        run_dir = os.path.join(temp_dir, "debug", "square")
        assert os.path.exists(os.path.join(run_dir, "palette", "swatches.png"))
        assert os.path.exists(os.path.join(run_dir, "palette", "palette.json"))
        assert os.path.exists(os.path.join(run_dir, "masks", "ink_1_refined.png"))
        assert os.path.exists(os.path.join(run_dir, "contours", "ink_2_contours.png"))
        assert os.path.exists(os.path.join(run_dir, "output", "document.svg"))
        assert os.path.exists(os.path.join(run_dir, "output", "run_summary.json"))

    def test_cli_run(self, red_square_file, temp_dir, capsys):
        from inktrace.cli import main

        out_path = os.path.join(temp_dir, "out", "square.svg")
        report_dir = os.path.join(temp_dir, "report")
        code = main(["run", "-i", red_square_file, "-o", out_path, "--max-colors", "2", "--report", report_dir])

        assert code == 0
        out = capsys.readouterr().out
        assert "\nVectorization completed.\n" in out
        assert "  Paths: " in out
        with open(out_path, encoding="utf-8") as f:
            assert "<svg" in f.read()
        assert os.path.exists(os.path.join(report_dir, "validation_report.json"))
        assert os.path.exists(os.path.join(report_dir, "validation_summary.txt"))

    def test_cli_transparent_exit_code(self, temp_dir):
        from inktrace.cli import main

        path = os.path.join(temp_dir, "clear.png")
        cv2.imwrite(path, np.zeros((20, 20, 4), dtype=np.uint8))
        code = main(["run", "-i", path, "-o", os.path.join(temp_dir, "clear.svg")])
        assert code == 2

    def test_cli_init_config(self, temp_dir):
        from inktrace.cli import main
        from inktrace.config import load_config

        path = os.path.join(temp_dir, "config.yaml")
        assert main(["init-config", "-o", path]) == 0
        assert load_config(path).palette.max_colors == 5


class TestBatch:
    """Tests for multi-image runs."""

    def test_failures_isolated_per_item(self, red_square_buffer, transparent_buffer, four_color_buffer,
                                        default_config):
        items = vectorize_batch(
            [red_square_buffer, transparent_buffer, four_color_buffer],
            default_config,
            names=["square", "clear", "quads"],
        )

        assert [item.name for item in items] == ["square", "clear", "quads"]
        assert [item.ok for item in items] == [True, False, True]
        assert items[1].document is None
        assert items[1].error_type == "DecodeError"
        assert items[1].error
        assert items[0].error is None
        assert "#ff0000" in items[0].document.layer_path_counts

    def test_same_document_as_single_run(self, red_square_buffer, four_color_buffer, default_config):
        items = vectorize_batch([four_color_buffer, red_square_buffer], default_config)

        assert [item.name for item in items] == ["image_1", "image_2"]
        assert items[1].document.svg == vectorize(red_square_buffer, default_config).svg

    def test_unexpected_error_recorded(self, red_square_buffer, flat_gray_buffer, default_config, monkeypatch):
        import inktrace.pipeline as pipeline

        original = pipeline.vectorize

        def flaky(buffer, config=None, **kwargs):
            if buffer is flat_gray_buffer:
                raise RuntimeError("worker pool gone")
            return original(buffer, config, **kwargs)

        monkeypatch.setattr(pipeline, "vectorize", flaky)
        items = pipeline.vectorize_batch([flat_gray_buffer, red_square_buffer], default_config)

        assert not items[0].ok
        assert items[0].error_type == "RuntimeError"
        assert items[0].error == "worker pool gone"
        assert items[1].ok

    def test_options_applied_to_every_item(self, red_square_buffer, four_color_buffer):
        items = vectorize_batch([red_square_buffer, four_color_buffer], options={"maxColors": 2})
        assert all(item.document.palette_size <= 2 for item in items)

    def test_names_must_match(self, red_square_buffer):
        with pytest.raises(ValueError):
            vectorize_batch([red_square_buffer], names=["a", "b"])


class TestPreviews:
    """Tests for side-by-side quality previews."""

    def test_default_qualities(self, red_square_buffer, default_config):
        previews = generate_previews(red_square_buffer, default_config)

        assert list(previews) == ["draft", "standard", "premium"]
        for document in previews.values():
            assert not document.fallback_mode
            assert "#ff0000" in document.layer_path_counts
            assert document.states[-1] == PipelineState.DONE
        assert default_config.contour.minimum_area == 25

    def test_selected_qualities(self, four_color_buffer):
        previews = generate_previews(four_color_buffer, qualities=("silkscreen",))
        assert list(previews) == ["silkscreen"]
        assert previews["silkscreen"].layer_count >= 2

    def test_unknown_quality_rejected_before_rendering(self, red_square_buffer, monkeypatch):
        import inktrace.pipeline as pipeline

        calls = []
        monkeypatch.setattr(pipeline, "vectorize", lambda *args, **kwargs: calls.append(args))

        with pytest.raises(ValueError):
            pipeline.generate_previews(red_square_buffer, qualities=("draft", "cinematic"))
        assert calls == []

    def test_transparent_buffer(self, transparent_buffer):
        with pytest.raises(DecodeError):
            generate_previews(transparent_buffer)
