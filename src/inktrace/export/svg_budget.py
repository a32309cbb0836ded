"""
Budgeted SVG assembly for inktrace.

Writes one <g> per ink with even-odd filled <path> elements, admitting the
simplest paths first so that the per-layer, total-path and byte budgets
hold. If the rendered document still exceeds the byte budget, coordinate
precision is lowered and then the heaviest paths are dropped.
"""

import svgwrite

from inktrace.models import DiagnosticKind, SegmentKind, SVGDocument
from inktrace.tracer import Telemetry, get_tracer, trace


XML_DECLARATION = '<?xml version="1.0" encoding="utf-8" ?>\n'


def format_number(value, precision):
    """Round to precision decimals without trailing zeros; never '-0'."""
    text = f"{round(float(value), precision):.{precision}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in ("-0", ""):
        text = "0"
    return text


def _point(p, precision):
    return f"{format_number(p[0], precision)} {format_number(p[1], precision)}"


def path_data(path, precision):
    """
    SVG path data for a VectorPath: one M...Z chain per subpath.
    """
    parts = []
    for subpath in path.subpaths:
        if not subpath.segments:
            continue
        parts.append("M" + _point(subpath.segments[0].start, precision))
        for segment in subpath.segments:
            if segment.kind == SegmentKind.LINE:
                parts.append("L" + _point(segment.end, precision))
            else:
                parts.append("C" + " ".join(_point(p, precision) for p in segment.points[1:]))
        parts.append("Z")
    return " ".join(parts)


def _path_markup(path, precision):
    return f'<path d="{path_data(path, precision)}" id="{path.path_id}" />'


def _group_markup(entry):
    return f'<g fill="{entry.color.hex}" fill-rule="evenodd" id="ink-{entry.index + 1}"></g>'


def render_svg(admitted, width, height, palette_size, fallback_mode, precision):
    """
    Render admitted paths as SVG text.

    Args:
        admitted: list of (PaletteEntry, [VectorPath]) in palette order
        width, height: working canvas size
        palette_size: number of palette entries (metadata)
        fallback_mode: whether this is the monochrome fallback (metadata)
        precision: decimals kept in path coordinates

    Returns:
        SVG document text with XML declaration
    """
    dwg = svgwrite.Drawing(size=(width, height), debug=False)
    dwg.viewbox(0, 0, width, height)
    dwg.attribs["data-palette-size"] = str(palette_size)
    dwg.attribs["data-fallback-mode"] = "true" if fallback_mode else "false"

    path_count = sum(len(paths) for _, paths in admitted)
    mode = "monochrome trace" if fallback_mode else f"{palette_size}-color separation"
    dwg.set_desc(title="inktrace", desc=f"{mode}, {path_count} paths")

    for entry, paths in admitted:
        if not paths:
            continue
        group = dwg.g(id=f"ink-{entry.index + 1}", fill=entry.color.hex, fill_rule="evenodd")
        for path in paths:
            group.add(dwg.path(d=path_data(path, precision), id=path.path_id))
        dwg.add(group)

    return XML_DECLARATION + dwg.tostring()


def admit_paths(layers, budget, base_bytes, precision):
    """
    Choose the paths that fit the budgets.

    Layers are visited in palette order and each layer's paths simplest
    first. Hitting the per-layer cap ends that layer only; hitting the total
    path cap or the byte budget ends admission.

    Returns:
        (admitted [(entry, paths)], number of paths left out)
    """
    admitted = []
    total = 0
    used = base_bytes
    exhausted = False
    offered = sum(len(layer.paths) for layer in layers)

    for layer in layers:
        chosen = []
        if not exhausted:
            for path in sorted(layer.paths, key=lambda p: p.complexity):
                if len(chosen) >= budget.max_paths_per_layer:
                    break
                if total >= budget.max_total_paths:
                    exhausted = True
                    break
                cost = len(_path_markup(path, precision))
                if not chosen:
                    cost += len(_group_markup(layer.entry))
                if used + cost > budget.max_document_bytes:
                    exhausted = True
                    break
                chosen.append(path)
                total += 1
                used += cost
        admitted.append((layer.entry, chosen))

    return admitted, offered - total


@trace(label="assemble_document")
def assemble_document(layers, width, height, config, palette_size=None, fallback_mode=False, telemetry=None):
    """
    Assemble color layers into a budgeted SVG document.

    Args:
        layers: ColorLayers in palette order
        width, height: working canvas size
        config: PipelineConfig (budget section)
        palette_size: palette size written to the metadata; defaults to len(layers)
        fallback_mode: mark the document as a monochrome fallback
        telemetry: optional Telemetry

    Returns:
        SVGDocument (states, diagnostics and validation are filled in by the caller)
    """
    tracer = get_tracer()
    telemetry = telemetry or Telemetry()
    budget = config.budget
    precision = budget.precision
    palette_size = len(layers) if palette_size is None else palette_size

    base_bytes = len(render_svg([], width, height, palette_size, fallback_mode, precision).encode("utf-8"))
    admitted, left_out = admit_paths(layers, budget, base_bytes, precision)
    if left_out:
        telemetry.record(
            DiagnosticKind.BUDGET_EXCEEDED,
            "assemble",
            f"{left_out} paths left out by path and byte budgets",
            dropped=left_out,
        )

    svg = render_svg(admitted, width, height, palette_size, fallback_mode, precision)

    if len(svg.encode("utf-8")) > budget.max_document_bytes:
        svg, precision, dropped = _emergency_pass(admitted, width, height, palette_size, fallback_mode, budget)
        telemetry.record(
            DiagnosticKind.BUDGET_EXCEEDED,
            "assemble",
            f"Document over {budget.max_document_bytes} bytes; precision lowered to {precision}, "
            f"{dropped} paths dropped",
            precision=precision,
            dropped=dropped,
        )

    layer_path_counts = {entry.color.hex: len(paths) for entry, paths in admitted if paths}
    path_count = sum(layer_path_counts.values())
    byte_size = len(svg.encode("utf-8"))

    tracer.event(f"Assembled {path_count} paths in {len(layer_path_counts)} groups, {byte_size} bytes")

    return SVGDocument(
        width=width,
        height=height,
        svg=svg,
        byte_size=byte_size,
        palette_size=palette_size,
        fallback_mode=fallback_mode,
        path_count=path_count,
        layer_path_counts=layer_path_counts,
        precision=precision,
    )


def _emergency_pass(admitted, width, height, palette_size, fallback_mode, budget):
    """
    Shrink an over-budget document in place.

    Lowers precision down to min_precision, then drops the path with the
    longest path data until the document fits or no path is left.

    Returns:
        (svg, precision, number of dropped paths)
    """
    tracer = get_tracer()

    def render(p):
        return render_svg(admitted, width, height, palette_size, fallback_mode, p)

    def size(text):
        return len(text.encode("utf-8"))

    precision = budget.precision
    svg = render(precision)
    while size(svg) > budget.max_document_bytes and precision > budget.min_precision:
        precision -= 1
        svg = render(precision)
        tracer.event(f"Precision lowered to {precision}: {size(svg)} bytes")

    dropped = 0
    while size(svg) > budget.max_document_bytes:
        candidates = [
            (len(path_data(path, precision)), li, pi)
            for li, (_, paths) in enumerate(admitted)
            for pi, path in enumerate(paths)
        ]
        if not candidates:
            break
        _, li, pi = max(candidates)
        del admitted[li][1][pi]
        dropped += 1
        svg = render(precision)

    return svg, precision, dropped
