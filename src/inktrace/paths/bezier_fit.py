"""
Cubic Bezier fitting for inktrace.

Each smooth run of polygon vertices between two corners is replaced by one
cubic. The end points are pinned to the run; the two control points start
on the chord and are moved by a shrinking grid search that minimizes the
mean distance between the curve and the run.
"""

import numpy as np

from inktrace.models import PathSegment, SegmentKind


# 3x3 grid of unit offsets, the centre (no move) included
GRID = np.array([[dx, dy] for dy in (-1, 0, 1) for dx in (-1, 0, 1)], dtype=np.float64)


def bezier_points(p0, c1, c2, p3, t):
    """
    Evaluate cubic Beziers at parameters t.

    Control points may carry leading batch dimensions, e.g. c1 of shape
    (B, 2); the result then has shape (B, len(t), 2).
    """
    t = np.asarray(t, dtype=np.float64)[:, None]
    mt = 1.0 - t
    c1 = np.asarray(c1, dtype=np.float64)[..., None, :]
    c2 = np.asarray(c2, dtype=np.float64)[..., None, :]
    return (mt ** 3) * p0 + (3 * mt ** 2 * t) * c1 + (3 * mt * t ** 2) * c2 + (t ** 3) * p3


def fit_error(points, p0, c1, c2, p3):
    """Mean Euclidean distance from points to the curve sampled at uniform t."""
    t = np.linspace(0.0, 1.0, len(points))
    curve = bezier_points(p0, c1, c2, p3, t)
    return np.linalg.norm(curve - points, axis=-1).mean(axis=-1)


def line_segments(points):
    """Straight segments joining consecutive points."""
    return [
        PathSegment(kind=SegmentKind.LINE, points=[list(map(float, a)), list(map(float, b))])
        for a, b in zip(points[:-1], points[1:])
    ]


def fit_cubic_run(points, bezier_config):
    """
    Fit one cubic to a run of points.

    Args:
        points: list of [x, y], end points included
        bezier_config: BezierConfig

    Returns:
        (segments, error, history) where history lists the best error after
        each search step and never increases; runs shorter than 4 points
        come back as line segments with error 0
    """
    pts = np.asarray(points, dtype=np.float64)
    if len(pts) < 4:
        return line_segments(pts), 0.0, [0.0]

    p0, p3 = pts[0], pts[-1]
    chord = p3 - p0
    c1 = p0 + 0.25 * chord
    c2 = p0 + 0.75 * chord

    best = float(fit_error(pts, p0, c1, c2, p3))
    history = [best]
    step = max(0.5, bezier_config.initial_step_ratio * float(np.linalg.norm(chord)))

    iterations = 0
    while (
        best > bezier_config.error_tolerance
        and iterations < bezier_config.max_iterations
        and step >= bezier_config.min_step
    ):
        iterations += 1
        candidates_c1 = np.repeat(c1 + step * GRID, len(GRID), axis=0)
        candidates_c2 = np.tile(c2 + step * GRID, (len(GRID), 1))
        errors = fit_error(pts, p0, candidates_c1, candidates_c2, p3)

        i = int(np.argmin(errors))
        if errors[i] < best:
            best = float(errors[i])
            c1, c2 = candidates_c1[i], candidates_c2[i]
        else:
            step /= 2.0
        history.append(best)

    segment = PathSegment(
        kind=SegmentKind.CUBIC,
        points=[p0.tolist(), c1.tolist(), c2.tolist(), p3.tolist()],
    )
    return [segment], best, history


def split_runs(vertices, corners, max_run_vertices):
    """
    Cut an open vertex cycle into runs between corners.

    Without corners the whole cycle is one run from vertex 0 back to
    itself. Runs longer than max_run_vertices are split evenly. Adjacent
    runs share their end points.
    """
    n = len(vertices)
    if corners:
        first = corners[0]
        rotated = list(vertices[first:]) + list(vertices[:first])
        cuts = sorted((c - first) % n for c in corners) + [n]
        cycle = rotated + [rotated[0]]
        runs = [cycle[a:b + 1] for a, b in zip(cuts[:-1], cuts[1:])]
    else:
        runs = [list(vertices) + [vertices[0]]]

    chunked = []
    for run in runs:
        if len(run) <= max_run_vertices:
            chunked.append(run)
            continue
        pieces = int(np.ceil((len(run) - 1) / (max_run_vertices - 1)))
        bounds = np.round(np.linspace(0, len(run) - 1, pieces + 1)).astype(int)
        chunked.extend(run[a:b + 1] for a, b in zip(bounds[:-1], bounds[1:]))
    return chunked


def fit_closed_path(points, corners, bezier_config):
    """
    Fit a closed polygon with lines and cubics.

    Args:
        points: closed list of [x, y] (first == last)
        corners: corner indices into the open vertex list
        bezier_config: BezierConfig

    Returns:
        (segments, worst run error)
    """
    vertices = points[:-1]
    segments = []
    worst = 0.0
    for run in split_runs(vertices, corners, max(bezier_config.max_run_vertices, 2)):
        run_segments, error, _ = fit_cubic_run(run, bezier_config)
        segments.extend(run_segments)
        worst = max(worst, error)
    return segments, worst
