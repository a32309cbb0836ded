"""
Main pipeline orchestrator for inktrace.

Runs palette extraction once, fans the per-color stages (mask, refine,
trace, simplify) out over a worker pool, and merges the results in palette
order into one budgeted SVG document. Runs that produce nothing fall back
to a monochrome trace.
"""

import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from inktrace.config import PipelineConfig, config_from_options
from inktrace.contours.moore_trace import trace_mask
from inktrace.errors import DecodeError
from inktrace.export.monochrome import monochrome_trace
from inktrace.export.svg_budget import assemble_document
from inktrace.io.pixel_source import validate_pixel_buffer
from inktrace.models import BatchItem, ColorLayer, DiagnosticKind, PipelineState
from inktrace.palette.extract import extract_palette
from inktrace.paths.simplify import simplify_polygons
from inktrace.presets import PREVIEW_QUALITIES, apply_preset
from inktrace.segment.mask_build import build_mask
from inktrace.segment.mask_refine import refine_mask
from inktrace.tracer import Telemetry, get_tracer, trace
from inktrace.validate.rules import run_validation


class PipelineRun:
    """
    State of one vectorization run.

    Only the transitions in TRANSITIONS are legal; anything else is a
    programming error and raises RuntimeError.
    """

    TRANSITIONS = {
        PipelineState.INIT: {PipelineState.PALETTE},
        PipelineState.PALETTE: {PipelineState.MASKING},
        PipelineState.MASKING: {PipelineState.REFINING, PipelineState.FALLBACK},
        PipelineState.REFINING: {PipelineState.TRACING},
        PipelineState.TRACING: {PipelineState.SIMPLIFYING, PipelineState.FALLBACK},
        PipelineState.SIMPLIFYING: {PipelineState.ASSEMBLING},
        PipelineState.ASSEMBLING: {PipelineState.DONE, PipelineState.FALLBACK},
        PipelineState.FALLBACK: {PipelineState.DONE},
        PipelineState.DONE: set(),
    }

    def __init__(self):
        self.state = PipelineState.INIT
        self.states = [PipelineState.INIT]

    def advance(self, state):
        if state not in self.TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal pipeline transition {self.state.value} -> {state.value}")
        get_tracer().event(f"State {self.state.value} -> {state.value}")
        self.state = state
        self.states.append(state)


@dataclass
class ColorResult:
    """Output of the per-color stages for one palette entry."""
    entry: object
    mask: object = None
    polygons: list = field(default_factory=list)
    paths: list = field(default_factory=list)

    @property
    def coverage(self):
        return self.mask.coverage if self.mask is not None else 0.0


def process_color(buffer, entry, config, telemetry, debug_writer=None):
    """
    Mask, refine, trace and simplify one palette color.

    Runs on a worker thread; shares nothing with other colors except the
    read-only buffer and the thread-safe telemetry.
    """
    tracer = get_tracer()
    name = f"ink_{entry.index + 1}"

    with tracer.span(f"color_{entry.color.hex}", module="pipeline"):
        mask = build_mask(buffer, entry, config, telemetry)
        if mask is None:
            return ColorResult(entry=entry)

        refined = refine_mask(mask, config)
        polygons = trace_mask(refined, config)
        paths = simplify_polygons(polygons, entry, config, telemetry)

        if debug_writer:
            debug_writer.save_mask(mask, "masks", f"{name}_raw.png")
            debug_writer.save_mask(refined, "masks", f"{name}_refined.png")
            debug_writer.save_polygons(refined, polygons, f"{name}_contours.png")

    return ColorResult(entry=entry, mask=refined, polygons=polygons, paths=paths)


def run_color_workers(buffer, palette, config, telemetry, debug_writer=None):
    """
    Run process_color for every palette entry.

    Results come back in palette order whatever the completion order. A
    color whose worker raises is dropped with a STAGE_FAILED diagnostic.
    """
    tracer = get_tracer()
    max_workers = config.workers.max_workers

    def _collect(entry, call):
        try:
            return call()
        except Exception as e:
            telemetry.record(
                DiagnosticKind.STAGE_FAILED,
                "color",
                f"Processing {entry.color.hex} failed: {type(e).__name__}: {e}",
                level="ERROR",
                color=entry.color.hex,
            )
            return None

    if max_workers <= 1 or palette.size == 1:
        results = [
            _collect(entry, lambda entry=entry: process_color(buffer, entry, config, telemetry, debug_writer))
            for entry in palette.entries
        ]
    else:
        with ThreadPoolExecutor(max_workers=min(max_workers, palette.size), thread_name_prefix="ink") as pool:
            futures = [
                (entry, pool.submit(process_color, buffer, entry, config, telemetry, debug_writer))
                for entry in palette.entries
            ]
            results = [_collect(entry, future.result) for entry, future in futures]

    results = [r for r in results if r is not None]
    tracer.event(f"Processed {len(results)}/{palette.size} colors with max_workers={max_workers}")
    return results


def _finish(run, document, config, telemetry, debug_writer):
    run.advance(PipelineState.DONE)
    document = document.model_copy(update={
        "states": list(run.states),
        "diagnostics": telemetry.snapshot(),
    })
    document = document.model_copy(update={"validation": run_validation(document, config)})

    if debug_writer:
        debug_writer.save_svg(document.svg, "output", "document.svg")
        debug_writer.save_json(
            {
                "states": [s.value for s in document.states],
                "path_count": document.path_count,
                "byte_size": document.byte_size,
                "layer_path_counts": document.layer_path_counts,
                "diagnostics": [d.model_dump(mode="json") for d in document.diagnostics],
            },
            "output",
            "run_summary.json",
        )
    return document


def _fallback(run, buffer, config, telemetry, reason, debug_writer=None):
    """
    Resolve a run through the monochrome trace.

    Terminal: if the monochrome trace itself fails, the run still ends in
    DONE with an empty fallback document and a STAGE_FAILED diagnostic.
    """
    tracer = get_tracer()

    run.advance(PipelineState.FALLBACK)
    telemetry.record(DiagnosticKind.EMPTY_RESULT, run.states[-2].value, reason)

    with tracer.span("monochrome_fallback", module="pipeline"):
        try:
            layer = monochrome_trace(buffer, config, telemetry)
            document = assemble_document(
                [layer], buffer.width, buffer.height, config,
                palette_size=1, fallback_mode=True, telemetry=telemetry,
            )
        except Exception as e:
            telemetry.record(
                DiagnosticKind.STAGE_FAILED,
                "fallback",
                f"Monochrome fallback failed: {type(e).__name__}: {e}",
                level="ERROR",
            )
            document = assemble_document(
                [], buffer.width, buffer.height, config,
                palette_size=1, fallback_mode=True, telemetry=telemetry,
            )
    return _finish(run, document, config, telemetry, debug_writer)


@trace(label="vectorize")
def vectorize(buffer, config=None, options=None, rng=None, telemetry=None, debug_writer=None):
    """
    Convert a pixel buffer into a budgeted multi-color SVG document.

    Args:
        buffer: PixelBuffer
        config: PipelineConfig (defaults if omitted)
        options: optional flat options record applied on top of config
        rng: optional numpy Generator for palette seeding
        telemetry: optional Telemetry collecting diagnostics
        debug_writer: optional DebugArtifactWriter

    Returns:
        SVGDocument

    Raises:
        DecodeError: the buffer is empty, malformed or fully transparent
    """
    tracer = get_tracer()

    if config is None:
        config = PipelineConfig()
    if options:
        config = config_from_options(options, base=config)
    telemetry = telemetry or Telemetry()

    validate_pixel_buffer(buffer, config.mask.alpha_floor)
    run = PipelineRun()

    run.advance(PipelineState.PALETTE)
    with tracer.span("palette", module="pipeline"):
        palette = extract_palette(buffer, config, rng=rng, telemetry=telemetry)
        if debug_writer:
            debug_writer.save_palette(palette)

    run.advance(PipelineState.MASKING)
    with tracer.span("per_color", module="pipeline", colors=palette.size):
        results = run_color_workers(buffer, palette, config, telemetry, debug_writer)

    retained = [r for r in results if r.mask is not None]
    if not retained:
        return _fallback(run, buffer, config, telemetry, "No color produced a usable mask", debug_writer)

    run.advance(PipelineState.REFINING)
    run.advance(PipelineState.TRACING)
    if not any(r.polygons for r in retained):
        return _fallback(run, buffer, config, telemetry, "No boundaries traced", debug_writer)

    run.advance(PipelineState.SIMPLIFYING)
    layers = [ColorLayer(entry=r.entry, paths=r.paths, coverage=r.coverage) for r in retained]

    run.advance(PipelineState.ASSEMBLING)
    try:
        document = assemble_document(
            layers, buffer.width, buffer.height, config,
            palette_size=palette.size, telemetry=telemetry,
        )
    except Exception as e:
        telemetry.record(
            DiagnosticKind.STAGE_FAILED,
            "assembling",
            f"Assembly failed: {type(e).__name__}: {e}",
            level="ERROR",
        )
        return _fallback(run, buffer, config, telemetry, "Assembly failed", debug_writer)

    if document.path_count == 0:
        return _fallback(run, buffer, config, telemetry, "No paths admitted", debug_writer)

    return _finish(run, document, config, telemetry, debug_writer)


@trace(label="vectorize_batch")
def vectorize_batch(buffers, config=None, options=None, names=None):
    """
    Vectorize several buffers one after another, isolating failures.

    Every run gets its own Telemetry and seeds its palette from the config,
    so an item's document does not depend on its position in the batch.

    Args:
        buffers: sequence of PixelBuffer
        config: PipelineConfig shared by every item (defaults if omitted)
        options: optional flat options record applied on top of config
        names: optional labels, one per buffer (default "image_<n>")

    Returns:
        list of BatchItem in input order; an item whose run raised carries
        the error message and exception type instead of a document
    """
    tracer = get_tracer()

    if config is None:
        config = PipelineConfig()
    if options:
        config = config_from_options(options, base=config)
    if names is None:
        names = [f"image_{i + 1}" for i in range(len(buffers))]
    elif len(names) != len(buffers):
        raise ValueError(f"Got {len(names)} names for {len(buffers)} buffers")

    items = []
    for index, (name, buffer) in enumerate(zip(names, buffers)):
        tracer.event(f"Batch item {index + 1}/{len(buffers)}: {name}")
        try:
            document = vectorize(buffer, config)
        except Exception as e:
            level = "WARN" if isinstance(e, DecodeError) else "ERROR"
            tracer.event(f"Batch item {name} failed: {type(e).__name__}: {e}", level=level)
            items.append(BatchItem(index=index, name=name, error=str(e), error_type=type(e).__name__))
            continue
        items.append(BatchItem(index=index, name=name, document=document))

    succeeded = sum(1 for item in items if item.ok)
    tracer.event(f"Batch finished: {succeeded}/{len(items)} documents")
    return items


@trace(label="generate_previews")
def generate_previews(buffer, config=None, qualities=PREVIEW_QUALITIES):
    """
    Render one buffer at several quality presets.

    Presets are applied with apply_preset to a copy of config, so the
    caller's config is left untouched.

    Returns:
        dict mapping quality name to SVGDocument, in the order given

    Raises:
        ValueError: a quality name is not a known preset (checked before
            any rendering)
        DecodeError: the buffer is empty, malformed or fully transparent
    """
    tracer = get_tracer()

    if config is None:
        config = PipelineConfig()
    configs = {quality: apply_preset(config, quality=quality) for quality in qualities}
    validate_pixel_buffer(buffer, config.mask.alpha_floor)

    previews = {}
    for quality, preset_config in configs.items():
        with tracer.span(f"preview_{quality}", module="pipeline"):
            previews[quality] = vectorize(buffer, preset_config)
    return previews


def write_document(document, path):
    """Write the SVG text of a document to path."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(document.svg)
    return path
