"""
Palette extraction for inktrace.

Clusters the visible pixels of a buffer with k-means (k-means++ seeding,
Lloyd iterations under the perceptual metric) into a small set of
representative ink colors. Extraction never fails: inputs too small or too
flat to cluster yield a contrast palette and a diagnostic instead.
"""

import numpy as np

from inktrace.errors import DegenerateInputError
from inktrace.models import Color, DiagnosticKind, Palette, PaletteEntry
from inktrace.palette.color import nearest_contrast, perceptual_distance, perceptual_distance_sq
from inktrace.tracer import Telemetry, get_tracer, trace


LUMA = np.array([0.299, 0.587, 0.114])


def sample_pixels(buffer, max_edge, alpha_floor):
    """
    Stride-sample a buffer down to roughly max_edge on its longer side.

    Returns:
        (N, 3) float64 array of RGB samples whose alpha reaches alpha_floor
    """
    arr = buffer.as_array()
    stride = max(1, int(np.ceil(max(buffer.width, buffer.height) / max(max_edge, 1))))
    flat = arr[::stride, ::stride].reshape(-1, buffer.channels)

    if buffer.has_alpha:
        flat = flat[flat[:, 3] >= alpha_floor]

    return flat[:, :3].astype(np.float64)


def kmeans_plus_plus_init(samples, k, rng):
    """
    Choose k initial centers with k-means++ seeding.

    The first center is uniform; each next one is drawn with probability
    proportional to its squared distance from the nearest chosen center.
    """
    n = len(samples)
    centers = [samples[rng.integers(n)]]
    closest = perceptual_distance_sq(samples, centers[0])

    for _ in range(1, k):
        total = closest.sum()
        if total > 0:
            idx = rng.choice(n, p=closest / total)
        else:
            idx = rng.integers(n)
        centers.append(samples[idx])
        closest = np.minimum(closest, perceptual_distance_sq(samples, samples[idx]))

    return np.array(centers, dtype=np.float64)


def assign_labels(samples, centers):
    """Index of the nearest center for every sample."""
    distances = np.stack([perceptual_distance_sq(samples, c) for c in centers])
    return np.argmin(distances, axis=0)


def run_kmeans(samples, k, config, rng):
    """
    Lloyd iterations from k-means++ seeds.

    Args:
        samples: (N, 3) float64 RGB samples
        k: number of clusters
        config: PaletteConfig
        rng: numpy Generator

    Returns:
        (centers, counts, iterations)
    """
    tracer = get_tracer()

    n = len(samples)
    centers = kmeans_plus_plus_init(samples, k, rng)
    iterations = 0

    for iterations in range(1, config.max_iterations + 1):
        labels = assign_labels(samples, centers)
        new_centers = centers.copy()

        for j in range(k):
            members = samples[labels == j]
            if len(members):
                new_centers[j] = members.mean(axis=0)
            else:
                # empty cluster: reseed from a random sample
                new_centers[j] = samples[rng.integers(n)]

        movement = sum(perceptual_distance(a, b) for a, b in zip(centers, new_centers))
        centers = new_centers
        if movement < config.convergence_threshold:
            break

    labels = assign_labels(samples, centers)
    counts = np.bincount(labels, minlength=k)

    tracer.event(f"k-means converged after {iterations} iterations", k=k, samples=n)
    return centers, counts, iterations


def merge_close_centers(centers, counts, min_distance):
    """
    Fold clusters closer than min_distance into the heavier neighbour.

    Returns a list of (center, count) pairs, heaviest first.
    """
    kept = []
    for j in np.argsort(-counts, kind="stable"):
        if counts[j] == 0:
            continue
        center = centers[j]
        if kept:
            distances = [perceptual_distance(center, c) for c, _ in kept]
            nearest = int(np.argmin(distances))
            if distances[nearest] < min_distance:
                kept[nearest][1] += int(counts[j])
                continue
        kept.append([center, int(counts[j])])

    kept.sort(key=lambda pair: -pair[1])
    return [(c, n) for c, n in kept]


def _is_reserved(color, mask_config):
    return color.brightness < mask_config.reserved_dark or color.brightness > mask_config.reserved_light


def _entries(weighted_colors, mask_config):
    """
    PaletteEntry list sorted by descending weight, reindexed.

    weighted_colors holds (color, weight, reserved) triples.
    """
    ordered = sorted(weighted_colors, key=lambda item: -item[1])
    return [
        PaletteEntry(
            color=color,
            weight=min(weight, 1.0),
            index=i,
            reserved=reserved or _is_reserved(color, mask_config),
        )
        for i, (color, weight, reserved) in enumerate(ordered)
    ]


def contrast_palette(samples, config, fallback=True):
    """
    Fixed black/white palette weighted by the brightness split of samples.
    """
    n = len(samples)
    if n:
        dark = int(np.count_nonzero(samples @ LUMA < 128))
        dark_weight = max(dark / n, 1 / n)
        light_weight = max((n - dark) / n, 1 / n)
    else:
        dark_weight = light_weight = 0.5

    entries = _entries(
        [
            (Color(r=0, g=0, b=0), dark_weight, True),
            (Color(r=255, g=255, b=255), light_weight, True),
        ],
        config.mask,
    )
    return Palette(entries=entries, fallback=fallback)


def _uniform_palette(samples, config, telemetry):
    """Dominant color of a near-uniform image, plus a reserved contrast ink."""
    n = len(samples)
    dominant = Color.from_rgb(samples.mean(axis=0))
    weighted = [(dominant, 1.0, False)]

    if config.palette.force_contrast:
        contrast = nearest_contrast(dominant.as_tuple())
        close = perceptual_distance_sq(samples, contrast) < config.palette.min_distance ** 2
        count = int(np.count_nonzero(close))
        weighted.append((Color.from_rgb(contrast), max(count, 1) / n, True))

    telemetry.record(
        DiagnosticKind.DEGENERATE_INPUT,
        "palette",
        f"Near-uniform image, dominant color {dominant.hex}",
        level="INFO",
        samples=n,
    )
    return Palette(entries=_entries(weighted, config.mask), degenerate=True)


def _cluster(samples, config, rng, telemetry):
    tracer = get_tracer()
    palette_config = config.palette

    if len(samples) < palette_config.min_samples:
        raise DegenerateInputError(
            f"Only {len(samples)} visible pixels, need {palette_config.min_samples}"
        )

    quantized = (samples // palette_config.quantize_step).astype(np.int32)
    if len(np.unique(quantized, axis=0)) == 1:
        return _uniform_palette(samples, config, telemetry)

    n = len(samples)
    max_colors = max(2, min(palette_config.max_colors, palette_config.max_colors_limit))
    distinct = len(np.unique(samples, axis=0))
    k = min(max_colors, distinct)

    centers, counts, iterations = run_kmeans(samples, k, palette_config, rng)
    # Spacing is checked on the integer colors the palette will hold
    rounded = np.clip(np.round(centers), 0, 255)
    merged = merge_close_centers(rounded, counts, palette_config.min_distance)

    if len(merged) < k:
        tracer.event(f"Merged {k - len(merged)} near-duplicate clusters")

    weighted = [(Color.from_rgb(center), count / n, False) for center, count in merged]
    return Palette(entries=_entries(weighted, config.mask), iterations=iterations)


@trace(label="extract_palette")
def extract_palette(buffer, config, rng=None, telemetry=None):
    """
    Extract the ink palette of an image.

    Args:
        buffer: validated PixelBuffer
        config: PipelineConfig
        rng: optional numpy Generator; seeded from config.palette.seed if omitted
        telemetry: optional Telemetry collecting diagnostics

    Returns:
        Palette with entries sorted by descending weight
    """
    tracer = get_tracer()
    telemetry = telemetry or Telemetry()
    if rng is None:
        rng = np.random.default_rng(config.palette.seed)

    samples = np.empty((0, 3), dtype=np.float64)
    try:
        with tracer.span("sample", module="extract"):
            samples = sample_pixels(buffer, config.palette.sample_max_edge, config.mask.alpha_floor)
        with tracer.span("cluster", module="extract"):
            palette = _cluster(samples, config, rng, telemetry)
    except DegenerateInputError as e:
        telemetry.record(DiagnosticKind.DEGENERATE_INPUT, "palette", str(e), samples=len(samples))
        palette = contrast_palette(samples, config)
    except Exception as e:
        telemetry.record(
            DiagnosticKind.STAGE_FAILED,
            "palette",
            f"Palette extraction failed: {type(e).__name__}: {e}",
            level="ERROR",
        )
        palette = contrast_palette(samples, config)

    tracer.event(
        f"Palette: {palette.size} colors",
        colors=[e.color.hex for e in palette.entries],
        fallback=palette.fallback,
    )
    return palette
