"""
Polygon simplification and smoothing for inktrace.

Turns traced pixel boundaries into compact vector paths: Douglas-Peucker
reduces the vertex count, corners are detected on what remains, and the
smooth runs between corners are fitted with cubic Beziers.
"""

from collections import OrderedDict

import numpy as np
from shapely.geometry import Polygon

from inktrace.models import DiagnosticKind, SubPath, VectorPath, generate_path_id
from inktrace.paths.bezier_fit import fit_closed_path
from inktrace.paths.corners import detect_corners
from inktrace.tracer import Telemetry, get_tracer, trace


def rdp_simplify(points, epsilon):
    """
    Ramer-Douglas-Peucker simplification with an explicit stack.

    Works on open polylines and on closed polygons (first == last), where
    the farthest point from the shared end point is kept first.

    Args:
        points: list of [x, y] points
        epsilon: maximum distance threshold

    Returns:
        simplified list of points, end points kept
    """
    if len(points) <= 2:
        return [list(p) for p in points]

    arr = np.asarray(points, dtype=np.float64)
    keep = np.zeros(len(arr), dtype=bool)
    keep[0] = keep[-1] = True

    stack = [(0, len(arr) - 1)]
    while stack:
        first, last = stack.pop()
        if last - first < 2:
            continue
        distances = _perpendicular_distances(arr[first + 1:last], arr[first], arr[last])
        idx = int(np.argmax(distances))
        if distances[idx] > epsilon:
            split = first + 1 + idx
            keep[split] = True
            stack.append((first, split))
            stack.append((split, last))

    return [list(points[i]) for i in np.flatnonzero(keep)]


def _perpendicular_distances(points, start, end):
    """
    Distance from each point to the segment from start to end.
    """
    line_vec = end - start
    line_len = np.linalg.norm(line_vec)

    if line_len == 0:
        # Start and end are the same point (closed polygon)
        return np.linalg.norm(points - start, axis=1)

    line_unit = line_vec / line_len
    projections = np.clip(np.dot(points - start, line_unit), 0, line_len)
    nearest = start + np.outer(projections, line_unit)
    return np.linalg.norm(points - nearest, axis=1)


def _group_by_region(polygons):
    regions = OrderedDict()
    for polygon in polygons:
        regions.setdefault(polygon.region_id, []).append(polygon)
    return regions


def simplify_polygon(polygon, config):
    """
    Simplify, corner-split and fit one closed boundary.

    Returns:
        SubPath, or None when fewer than 4 points survive simplification
    """
    simplified = rdp_simplify(polygon.points, config.simplify.rdp_epsilon)
    if len(simplified) < 4:
        return None

    corners = detect_corners(simplified, config.corners.threshold_degrees)
    segments, error = fit_closed_path(simplified, corners, config.bezier)

    return SubPath(
        segments=segments,
        is_hole=polygon.is_hole,
        corner_count=len(corners),
        source_vertices=polygon.vertex_count,
        simplified_vertices=len(simplified),
        fit_error=round(float(error), 4),
    )


@trace(label="simplify_polygons")
def simplify_polygons(polygons, entry, config, telemetry=None):
    """
    Convert the boundaries of one mask into vector paths.

    One VectorPath per region: its outer boundary followed by its holes.
    A region whose outer boundary collapses is dropped together with its
    holes. Runs that miss the fitting tolerance keep their best fit and
    are reported once per color.

    Args:
        polygons: BoundaryPolygons from trace_mask
        entry: PaletteEntry the mask belongs to
        config: PipelineConfig
        telemetry: optional Telemetry

    Returns:
        list of VectorPath
    """
    tracer = get_tracer()
    telemetry = telemetry or Telemetry()
    fill = entry.color.hex
    tolerance = config.bezier.error_tolerance

    paths = []
    unreached = 0
    worst_error = 0.0
    points_before = 0
    points_after = 0

    for region_id, members in _group_by_region(polygons).items():
        outer = next((p for p in members if not p.is_hole), None)
        if outer is None:
            continue

        subpaths = []
        outline = None
        holes = []
        for polygon in [outer] + [p for p in members if p.is_hole]:
            subpath = simplify_polygon(polygon, config)
            if subpath is None:
                if polygon is outer:
                    break
                continue
            points_before += subpath.source_vertices
            points_after += subpath.simplified_vertices
            if subpath.fit_error > tolerance:
                unreached += 1
                worst_error = max(worst_error, subpath.fit_error)
            subpaths.append(subpath)
            if polygon is outer:
                outline = polygon
            else:
                holes.append(polygon)

        if outline is None:
            continue

        shape = Polygon(outline.points, [h.points for h in holes])
        paths.append(VectorPath(
            path_id=generate_path_id(fill, outline.points),
            fill=fill,
            subpaths=subpaths,
            area=float(shape.area),
            perimeter=float(shape.length),
        ))

    if unreached:
        telemetry.record(
            DiagnosticKind.TOLERANCE_UNREACHED,
            "simplify",
            f"{unreached} contours of {fill} exceed fitting tolerance {tolerance}",
            color=fill,
            count=unreached,
            worst_error=worst_error,
        )

    tracer.event(f"Simplified {fill}: {points_before} -> {points_after} vertices, {len(paths)} paths")
    return paths
