"""
Validation rules for inktrace documents.

Re-checks a finished SVGDocument against the configured budgets and the
structural guarantees of the assembler, reading the SVG text itself rather
than trusting the summary fields.
"""

import re
import xml.etree.ElementTree as ET

from shapely.geometry import MultiPoint, box

from inktrace.models import CheckResult, Severity, ValidationReport
from inktrace.tracer import get_tracer, trace


SVG_NS = "{http://www.w3.org/2000/svg}"
COMMAND_RE = re.compile(r"([MLCZ])([^MLCZ]*)")


def _parse(document):
    return ET.fromstring(document.svg.split("?>", 1)[-1].strip())


def _paths(root):
    return list(root.iter(f"{SVG_NS}path"))


def anchor_points(d):
    """End points of every M, L and C command in path data."""
    points = []
    for command, args in COMMAND_RE.findall(d):
        numbers = [float(v) for v in args.split()]
        if command in ("M", "L", "C") and len(numbers) >= 2:
            points.append((numbers[-2], numbers[-1]))
    return points


@trace(label="run_validation")
def run_validation(document, config):
    """
    Run all validation checks on the document.

    Budget violations are errors, or warnings for a monochrome fallback
    document.

    Returns ValidationReport with all check results.
    """
    tracer = get_tracer()

    root = _parse(document)
    budget_severity = Severity.WARN if document.fallback_mode else Severity.ERROR

    checks = [
        check_palette_size(document, config),
        check_layer_budget(root, config, budget_severity),
        check_total_paths(root, config, budget_severity),
        check_document_bytes(document, config, budget_severity),
        check_canvas(root, document),
        check_closed_paths(root),
        check_anchor_bounds(root, document),
    ]

    report = ValidationReport(checks=checks)
    tracer.event(f"Validation complete: {report.error_count} errors, {report.warning_count} warnings")
    return report


def check_palette_size(document, config):
    """Palette within the color budget (plus one reserved contrast ink)."""
    limit = config.palette.max_colors_limit + 1
    passed = 1 <= document.palette_size <= limit
    return CheckResult(
        rule_id="palette_size",
        severity=Severity.ERROR,
        passed=passed,
        message=f"Palette has {document.palette_size} colors (limit {limit})",
        evidence={"palette_size": document.palette_size, "limit": limit},
    )


def check_layer_budget(root, config, severity):
    """No color group holds more paths than max_paths_per_layer."""
    limit = config.budget.max_paths_per_layer
    over = {}
    for group in root.iter(f"{SVG_NS}g"):
        count = len(_paths(group))
        if count > limit:
            over[group.get("id")] = count

    return CheckResult(
        rule_id="layer_budget",
        severity=severity,
        passed=not over,
        message=f"{len(over)} layers exceed {limit} paths" if over else f"All layers within {limit} paths",
        evidence={"over_budget": over},
    )


def check_total_paths(root, config, severity):
    count = len(_paths(root))
    limit = config.budget.max_total_paths
    return CheckResult(
        rule_id="total_paths",
        severity=severity,
        passed=count <= limit,
        message=f"{count} paths (limit {limit})",
        evidence={"path_count": count, "limit": limit},
    )


def check_document_bytes(document, config, severity):
    size = len(document.svg.encode("utf-8"))
    limit = config.budget.max_document_bytes
    return CheckResult(
        rule_id="document_bytes",
        severity=severity,
        passed=size <= limit,
        message=f"Document is {size} bytes (limit {limit})",
        evidence={"bytes": size, "limit": limit},
    )


def check_canvas(root, document):
    """width, height and viewBox match the working canvas."""
    expected_box = f"0,0,{document.width},{document.height}"
    view_box = ",".join((root.get("viewBox") or "").replace(",", " ").split())
    width = root.get("width")
    height = root.get("height")

    passed = (
        view_box == expected_box
        and width == str(document.width)
        and height == str(document.height)
    )
    return CheckResult(
        rule_id="canvas",
        severity=Severity.ERROR,
        passed=passed,
        message="Canvas size and viewBox match" if passed else "Canvas size or viewBox mismatch",
        evidence={"width": width, "height": height, "viewBox": root.get("viewBox")},
    )


def check_closed_paths(root):
    """Every subpath in every path is closed with Z."""
    open_ids = []
    for path in _paths(root):
        d = path.get("d", "").strip()
        chains = [c for c in d.split("M") if c.strip()]
        if not chains or not all(c.rstrip().endswith("Z") for c in chains):
            open_ids.append(path.get("id"))

    return CheckResult(
        rule_id="closed_paths",
        severity=Severity.ERROR,
        passed=not open_ids,
        message=f"{len(open_ids)} paths not closed" if open_ids else "All paths closed",
        evidence={"open_paths": open_ids[:20]},
    )


def check_anchor_bounds(root, document):
    """
    Path anchor points lie on the canvas.

    Control points of cubics may legitimately leave it and are not checked.
    """
    canvas = box(0, 0, document.width, document.height).buffer(0.5)
    outside = []
    for path in _paths(root):
        points = anchor_points(path.get("d", ""))
        if points and not canvas.covers(MultiPoint(points)):
            outside.append(path.get("id"))

    return CheckResult(
        rule_id="anchor_bounds",
        severity=Severity.WARN,
        passed=not outside,
        message=f"{len(outside)} paths leave the canvas" if outside else "All anchors on canvas",
        evidence={"paths": outside[:20]},
    )
