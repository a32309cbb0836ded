"""
Boundary tracing with the Moore-neighbour algorithm.

Each 8-connected region of a mask is walked clockwise (in image
coordinates, y down) from its first pixel in row-major order. Enclosed
background pockets are walked the same way and tagged as holes so the
exported path can cut them out with the even-odd fill rule.
"""

import cv2
import numpy as np

from inktrace.models import BoundaryPolygon
from inktrace.tracer import get_tracer, trace


# Clockwise from north, as (dx, dy) with y growing downwards
NEIGHBOURS = [(0, -1), (1, -1), (1, 0), (1, 1), (0, 1), (-1, 1), (-1, 0), (-1, -1)]
DIRECTION_INDEX = {d: i for i, d in enumerate(NEIGHBOURS)}
WEST = 6


def _next_boundary_pixel(foreground, x, y, backtrack):
    """
    Scan the 8 neighbours clockwise, starting after the backtrack.

    Returns:
        ((nx, ny), new_backtrack) or None for an isolated pixel
    """
    height, width = foreground.shape
    for i in range(1, 9):
        k = (backtrack + i) % 8
        dx, dy = NEIGHBOURS[k]
        nx, ny = x + dx, y + dy
        if 0 <= nx < width and 0 <= ny < height and foreground[ny, nx]:
            px, py = NEIGHBOURS[k - 1]
            return (nx, ny), DIRECTION_INDEX[(px - dx, py - dy)]
    return None


def moore_trace(foreground, start, max_steps):
    """
    Walk the outer boundary of the region containing start.

    Args:
        foreground: 2D bool array; pixels outside it are background
        start: (x, y) of a boundary pixel whose west neighbour is background
        max_steps: hard limit on the number of moves

    Returns:
        closed list of [x, y] points (first == last)
    """
    sx, sy = start
    points = [[sx, sy]]
    x, y = sx, sy
    backtrack = WEST
    first_move = None

    for _ in range(max_steps):
        step = _next_boundary_pixel(foreground, x, y, backtrack)
        if step is None:
            break
        (nx, ny), backtrack = step

        # Jacob's stopping criterion: back at the start, about to repeat the first move
        if (x, y) == (sx, sy) and first_move is not None and (nx, ny) == first_move:
            break
        if first_move is None:
            first_move = (nx, ny)

        points.append([nx, ny])
        x, y = nx, ny

    if len(points) == 1 or points[-1] != points[0]:
        points.append([sx, sy])
    return points


def _first_pixel(region, top):
    """Row-major first pixel of a boolean region whose topmost row is top."""
    return int(np.argmax(region[top])), top


def _trace_holes(region, offset_x, offset_y, region_id, config, max_steps):
    """Trace the enclosed background pockets of one cropped region."""
    padded = np.pad(region, 1, constant_values=False)
    background = np.where(padded, 0, 255).astype(np.uint8)
    num_labels, labels, stats, _ = cv2.connectedComponentsWithStats(background, connectivity=4)
    outside = labels[0, 0]

    holes = []
    for label in range(1, num_labels):
        area = int(stats[label, cv2.CC_STAT_AREA])
        if label == outside or area < config.contour.minimum_area:
            continue
        pocket = labels == label
        start = _first_pixel(pocket, int(stats[label, cv2.CC_STAT_TOP]))
        points = moore_trace(pocket, start, max_steps)
        if len(points) < config.contour.min_vertices:
            continue
        shifted = [[px + offset_x - 1, py + offset_y - 1] for px, py in points]
        holes.append(BoundaryPolygon(points=shifted, region_id=region_id, is_hole=True, pixel_area=area))
    return holes


@trace(label="trace_mask")
def trace_mask(mask, config):
    """
    Trace every region of a refined mask.

    Regions smaller than contour.minimum_area and boundaries with fewer
    than contour.min_vertices points are discarded; a discarded region
    takes its holes with it.

    Returns:
        list of BoundaryPolygon in row-major order of their first pixel,
        each outer boundary followed by its holes
    """
    tracer = get_tracer()
    contour = config.contour

    num_labels, labels, stats, _ = cv2.connectedComponentsWithStats(mask.pixels, connectivity=8)
    max_steps = int(mask.pixels.size)

    regions = []
    for label in range(1, num_labels):
        area = int(stats[label, cv2.CC_STAT_AREA])
        if area < contour.minimum_area:
            continue
        left = int(stats[label, cv2.CC_STAT_LEFT])
        top = int(stats[label, cv2.CC_STAT_TOP])
        width = int(stats[label, cv2.CC_STAT_WIDTH])
        height = int(stats[label, cv2.CC_STAT_HEIGHT])
        crop = labels[top:top + height, left:left + width] == label
        x, _ = _first_pixel(crop, 0)
        regions.append((top, left + x, left, crop, area))

    regions.sort(key=lambda r: (r[0], r[1]))

    polygons = []
    discarded = 0
    region_id = 0
    for top, _, left, crop, area in regions:
        start = _first_pixel(crop, 0)
        points = moore_trace(crop, start, max_steps)
        if len(points) < contour.min_vertices:
            discarded += 1
            continue

        shifted = [[px + left, py + top] for px, py in points]
        polygons.append(BoundaryPolygon(points=shifted, region_id=region_id, pixel_area=area))
        if contour.trace_holes:
            polygons.extend(_trace_holes(crop, left, top, region_id, config, max_steps))
        region_id += 1

    hole_count = sum(1 for p in polygons if p.is_hole)
    tracer.event(
        f"Traced {mask.entry.color.hex}: {region_id} regions, {hole_count} holes, {discarded} discarded"
    )
    return polygons
