"""
Configuration management for inktrace.

Loads YAML configuration with sensible defaults for all pipeline stages and
maps the flat camelCase options record used by calling layers onto it.
"""

import copy
import os
from dataclasses import asdict, dataclass, field, fields, is_dataclass

import yaml

from inktrace.tracer import get_tracer


TOLERANCE_MODES = ("fixed", "adaptive")


@dataclass
class SourceConfig:
    """Working canvas handed to the pixel source adapter."""
    max_edge: int = 800


@dataclass
class PaletteConfig:
    """Configuration for k-means palette extraction."""
    max_colors: int = 5
    max_colors_limit: int = 10
    sample_max_edge: int = 400
    max_iterations: int = 20
    convergence_threshold: float = 0.5
    min_distance: float = 24.0
    min_samples: int = 16
    quantize_step: int = 8  # bin width for near-uniform detection
    force_contrast: bool = True
    seed: int = 42


@dataclass
class MaskConfig:
    """Configuration for per-color mask thresholding."""
    tolerance_mode: str = "adaptive"  # "fixed" or "adaptive"
    fixed_tolerance: float = 48.0
    dark_tolerance: float = 50.0
    mid_tolerance: float = 40.0
    light_tolerance: float = 45.0
    dark_brightness: float = 50.0
    light_brightness: float = 200.0
    high_saturation: float = 0.7
    low_saturation: float = 0.2
    high_saturation_bonus: float = 12.0
    low_saturation_bonus: float = 15.0
    alpha_floor: int = 10
    significance_ratio: float = 0.1
    min_coverage: float = 0.001
    reserved_dark: float = 40.0
    reserved_light: float = 215.0


@dataclass
class RefineConfig:
    """Configuration for morphological mask cleanup."""
    kernel_size: int = 3
    iterations: int = 1
    close_iterations: int = 0


@dataclass
class ContourConfig:
    """Configuration for boundary tracing."""
    minimum_area: int = 25
    min_vertices: int = 8
    trace_holes: bool = True


@dataclass
class SimplifyConfig:
    """Configuration for polygon simplification."""
    rdp_epsilon: float = 1.0


@dataclass
class CornerConfig:
    """Configuration for corner detection."""
    threshold_degrees: float = 45.0


@dataclass
class BezierConfig:
    """Configuration for cubic Bezier fitting."""
    error_tolerance: float = 1.0
    max_iterations: int = 30
    initial_step_ratio: float = 0.1
    min_step: float = 0.05
    max_run_vertices: int = 7


@dataclass
class BudgetConfig:
    """Hard limits enforced while assembling the SVG document."""
    max_paths_per_layer: int = 200
    max_total_paths: int = 800
    max_document_bytes: int = 512 * 1024
    precision: int = 2
    min_precision: int = 0


@dataclass
class MonochromeConfig:
    """Configuration for the terminal monochrome trace."""
    method: str = "otsu"  # "otsu" or "fixed"
    threshold: int = 128
    min_contrast: int = 8
    fill: str = "#000000"


@dataclass
class WorkerConfig:
    """Per-color fan-out."""
    max_workers: int = 4


@dataclass
class TracingConfig:
    """Configuration for runtime tracing."""
    enabled: bool = False
    level: str = "INFO"
    file_path: str = None
    json_output: bool = False


@dataclass
class DebugConfig:
    """Configuration for debug artifact generation."""
    enabled: bool = False
    out_dir: str = None
    max_edge_scale: int = 1600


@dataclass
class PipelineConfig:
    """Complete pipeline configuration."""
    source: SourceConfig = field(default_factory=SourceConfig)
    palette: PaletteConfig = field(default_factory=PaletteConfig)
    mask: MaskConfig = field(default_factory=MaskConfig)
    refine: RefineConfig = field(default_factory=RefineConfig)
    contour: ContourConfig = field(default_factory=ContourConfig)
    simplify: SimplifyConfig = field(default_factory=SimplifyConfig)
    corners: CornerConfig = field(default_factory=CornerConfig)
    bezier: BezierConfig = field(default_factory=BezierConfig)
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    monochrome: MonochromeConfig = field(default_factory=MonochromeConfig)
    workers: WorkerConfig = field(default_factory=WorkerConfig)
    tracing: TracingConfig = field(default_factory=TracingConfig)
    debug: DebugConfig = field(default_factory=DebugConfig)


# camelCase option -> (section, attribute, type)
OPTION_FIELDS = {
    "maxColors": ("palette", "max_colors", int),
    "colorToleranceMode": ("mask", "tolerance_mode", str),
    "pathFittingTolerance": ("bezier", "error_tolerance", float),
    "minimumArea": ("contour", "minimum_area", int),
    "cornerThresholdDegrees": ("corners", "threshold_degrees", float),
    "maxPathsPerLayer": ("budget", "max_paths_per_layer", int),
    "maxTotalPaths": ("budget", "max_total_paths", int),
    "maxDocumentBytes": ("budget", "max_document_bytes", int),
    "seed": ("palette", "seed", int),
}


def load_config(config_path=None):
    """
    Load configuration from YAML file.

    Falls back to defaults for any missing values.
    """
    config = PipelineConfig()

    if config_path and os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f) or {}

        config = _merge_config(config, yaml_data)

    validate_config(config)
    return config


def _merge_config(config, yaml_data):
    """Merge YAML data into config dataclass, section by section."""
    tracer = get_tracer()

    for section in fields(config):
        values = yaml_data.get(section.name)
        if not isinstance(values, dict):
            continue
        target = getattr(config, section.name)
        for key, value in values.items():
            if hasattr(target, key):
                setattr(target, key, value)
            else:
                tracer.event(f"Ignoring unknown config key {section.name}.{key}", level="WARN")

    return config


def validate_config(config):
    """Reject settings no run could honour."""
    if config.mask.tolerance_mode not in TOLERANCE_MODES:
        raise ValueError(
            f"Unknown colorToleranceMode {config.mask.tolerance_mode!r}; expected one of {TOLERANCE_MODES}"
        )
    if config.monochrome.method not in ("otsu", "fixed"):
        raise ValueError(f"Unknown monochrome method {config.monochrome.method!r}")
    if config.refine.kernel_size < 1:
        raise ValueError("refine.kernel_size must be >= 1")
    if config.budget.min_precision > config.budget.precision:
        raise ValueError("budget.min_precision must not exceed budget.precision")
    return config


def clamp_max_colors(value, config):
    """Bound the requested color count to [2, max_colors_limit]."""
    tracer = get_tracer()

    bounded = max(2, min(int(value), config.palette.max_colors_limit))
    if bounded != value:
        tracer.event(f"maxColors {value} clamped to {bounded}", level="WARN")
    return bounded


def config_from_options(options, base=None):
    """
    Build a PipelineConfig from the flat options record of a calling layer.

    Recognized keys are listed in OPTION_FIELDS, plus "quality" and
    "contentType" which select presets. Unknown keys are ignored.
    """
    from inktrace.presets import apply_preset

    tracer = get_tracer()
    config = copy.deepcopy(base) if base is not None else PipelineConfig()
    options = dict(options or {})

    quality = options.pop("quality", None)
    content_type = options.pop("contentType", None)
    if quality or content_type:
        config = apply_preset(config, quality=quality, content_type=content_type)

    for key, value in options.items():
        if key not in OPTION_FIELDS:
            tracer.event(f"Ignoring unknown option {key}", level="WARN")
            continue
        section, attr, cast = OPTION_FIELDS[key]
        setattr(getattr(config, section), attr, cast(value))

    config.palette.max_colors = clamp_max_colors(config.palette.max_colors, config)
    return validate_config(config)


def config_to_dict(config):
    """Plain nested dict of a config, suitable for YAML or JSON."""
    if not is_dataclass(config):
        raise TypeError("config must be a dataclass instance")
    return asdict(config)


def save_default_config(path):
    """Save default configuration to YAML file for reference."""
    yaml_data = config_to_dict(PipelineConfig())

    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(yaml_data, f, default_flow_style=False, sort_keys=False)
