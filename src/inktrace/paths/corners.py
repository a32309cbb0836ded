"""
Corner detection on closed polygons.

A vertex is a corner when the direction of travel turns by more than a
threshold there. Corners anchor the curve fitter: smooth runs are fitted
between them and the corners themselves stay sharp.
"""

import numpy as np


def _open_vertices(points):
    """Drop the closing duplicate of a closed point list."""
    if len(points) > 1 and list(points[0]) == list(points[-1]):
        points = points[:-1]
    return np.asarray(points, dtype=np.float64)


def turning_angles(points):
    """
    Signed turning angle in degrees at every vertex of a closed polygon.

    Args:
        points: closed list of [x, y] (first == last) or the open vertex list

    Returns:
        array with one angle per open vertex, wrapped to [-180, 180)
    """
    pts = _open_vertices(points)
    if len(pts) < 3:
        return np.zeros(len(pts))

    incoming = pts - np.roll(pts, 1, axis=0)
    outgoing = np.roll(pts, -1, axis=0) - pts
    heading_in = np.degrees(np.arctan2(incoming[:, 1], incoming[:, 0]))
    heading_out = np.degrees(np.arctan2(outgoing[:, 1], outgoing[:, 0]))

    return (heading_out - heading_in + 180.0) % 360.0 - 180.0


def detect_corners(points, threshold_degrees):
    """
    Indices (into the open vertex list) of vertices that turn sharply.
    """
    angles = turning_angles(points)
    return [int(i) for i in np.flatnonzero(np.abs(angles) > threshold_degrees)]
