"""
Pydantic data models for the inktrace pipeline.

Every value handed between stages is one of these models so that stage
boundaries stay validated. Content-based ID generation keeps the SVG output
deterministic for identical inputs.
"""

import hashlib
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, model_validator
from shapely.geometry import LineString, Polygon


class SegmentKind(str, Enum):
    """Kinds of path segment emitted by the path simplifier."""
    LINE = "line"
    CUBIC = "cubic"


class PipelineState(str, Enum):
    """States of a single vectorization run."""
    INIT = "init"
    PALETTE = "palette"
    MASKING = "masking"
    REFINING = "refining"
    TRACING = "tracing"
    SIMPLIFYING = "simplifying"
    ASSEMBLING = "assembling"
    FALLBACK = "fallback"
    DONE = "done"


class DiagnosticKind(str, Enum):
    """Recoverable conditions recorded during a run."""
    DEGENERATE_INPUT = "degenerate_input"
    MASK_REJECTED = "mask_rejected"
    TOLERANCE_UNREACHED = "tolerance_unreached"
    BUDGET_EXCEEDED = "budget_exceeded"
    EMPTY_RESULT = "empty_result"
    STAGE_FAILED = "stage_failed"


class Severity(str, Enum):
    """Severity levels for validation checks."""
    ERROR = "error"
    WARN = "warn"
    INFO = "info"


class PixelBuffer(BaseModel):
    """
    Decoded source image, row-major, 8 bits per channel.

    Channels are RGB (3) or RGBA (4). Instances are frozen; use
    validate_pixel_buffer() from inktrace.io.pixel_source before trusting
    the geometry.
    """
    width: int
    height: int
    channels: int
    data: bytes

    model_config = ConfigDict(frozen=True, extra="forbid")

    def as_array(self):
        """Return a read-only (H, W, C) uint8 view of the pixel data."""
        arr = np.frombuffer(self.data, dtype=np.uint8)
        return arr.reshape(self.height, self.width, self.channels)

    @property
    def has_alpha(self):
        return self.channels == 4


class Color(BaseModel):
    """One RGB sample."""
    r: int = Field(..., ge=0, le=255)
    g: int = Field(..., ge=0, le=255)
    b: int = Field(..., ge=0, le=255)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def from_rgb(cls, rgb):
        """Build a Color from any float or int triple, rounding and clipping."""
        r, g, b = (int(np.clip(round(float(c)), 0, 255)) for c in rgb[:3])
        return cls(r=r, g=g, b=b)

    @property
    def brightness(self):
        """Luma brightness in [0, 255]."""
        return self.r * 0.299 + self.g * 0.587 + self.b * 0.114

    @property
    def saturation(self):
        """HSV-style saturation in [0, 1]."""
        high = max(self.r, self.g, self.b)
        low = min(self.r, self.g, self.b)
        return (high - low) / max(high, 1)

    @property
    def hex(self):
        return f"#{self.r:02x}{self.g:02x}{self.b:02x}"

    def as_tuple(self):
        return (self.r, self.g, self.b)


class PaletteEntry(BaseModel):
    """Representative color of one cluster."""
    color: Color
    weight: float = Field(..., gt=0.0, le=1.0)
    index: int = Field(..., ge=0)
    reserved: bool = False

    model_config = ConfigDict(extra="forbid")


class Palette(BaseModel):
    """Bounded color set, sorted by descending weight."""
    entries: List[PaletteEntry] = Field(..., min_length=1)
    fallback: bool = False
    degenerate: bool = False
    iterations: int = 0

    model_config = ConfigDict(extra="forbid")

    @property
    def size(self):
        return len(self.entries)

    @property
    def colors(self):
        return [e.color for e in self.entries]


class Mask(BaseModel):
    """Binary occupancy bitmap (0/255) for one palette entry."""
    entry: PaletteEntry
    pixels: np.ndarray
    tolerance: float

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    @property
    def width(self):
        return int(self.pixels.shape[1])

    @property
    def height(self):
        return int(self.pixels.shape[0])

    @property
    def foreground_count(self):
        return int(np.count_nonzero(self.pixels))

    @property
    def coverage(self):
        """Fraction of the canvas that is foreground."""
        if self.pixels.size == 0:
            return 0.0
        return self.foreground_count / self.pixels.size


class BoundaryPolygon(BaseModel):
    """Closed outline of one traced mask region (or of one of its holes)."""
    points: List[List[int]]
    region_id: int = 0
    is_hole: bool = False
    pixel_area: int = 0

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_closed(self):
        if len(self.points) < 2 or self.points[0] != self.points[-1]:
            raise ValueError("boundary polygon must be closed (first point == last point)")
        return self

    @property
    def vertex_count(self):
        return len(self.points)

    @property
    def area(self):
        """Enclosed area of the outline through pixel centres."""
        if len(self.points) < 4:
            return 0.0
        return float(Polygon(self.points).area)

    @property
    def perimeter(self):
        return float(LineString(self.points).length)


class PathSegment(BaseModel):
    """A straight line (2 points) or cubic Bezier (4 points)."""
    kind: SegmentKind
    points: List[List[float]]

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_arity(self):
        expected = 2 if self.kind == SegmentKind.LINE else 4
        if len(self.points) != expected:
            raise ValueError(f"{self.kind.value} segment needs {expected} points, got {len(self.points)}")
        return self

    @property
    def start(self):
        return self.points[0]

    @property
    def end(self):
        return self.points[-1]


class SubPath(BaseModel):
    """One closed contour of a VectorPath."""
    segments: List[PathSegment] = Field(default_factory=list)
    is_hole: bool = False
    corner_count: int = 0
    source_vertices: int = 0
    simplified_vertices: int = 0
    fit_error: float = 0.0

    model_config = ConfigDict(extra="forbid")


class VectorPath(BaseModel):
    """Smoothed region outline (outer contour plus holes) with its fill."""
    path_id: str
    fill: str
    subpaths: List[SubPath] = Field(default_factory=list)
    area: float = 0.0
    perimeter: float = 0.0

    model_config = ConfigDict(extra="forbid")

    @property
    def segment_count(self):
        return sum(len(s.segments) for s in self.subpaths)

    @property
    def complexity(self):
        """Sort key for budget admission: fewer segments, then shorter outline."""
        return (self.segment_count, self.perimeter)

    @property
    def corner_count(self):
        return sum(s.corner_count for s in self.subpaths)


class ColorLayer(BaseModel):
    """All paths traced for one palette entry."""
    entry: PaletteEntry
    paths: List[VectorPath] = Field(default_factory=list)
    coverage: float = 0.0

    model_config = ConfigDict(extra="forbid")


class Diagnostic(BaseModel):
    """A recovered condition recorded during a run."""
    kind: DiagnosticKind
    stage: str
    message: str
    evidence: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


class CheckResult(BaseModel):
    """Result of a single validation check."""
    rule_id: str
    severity: Severity
    passed: bool
    message: str
    evidence: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


class ValidationReport(BaseModel):
    """Collection of validation check results."""
    checks: List[CheckResult] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    @property
    def has_errors(self):
        """Check if any errors exist."""
        return any(c.severity == Severity.ERROR and not c.passed for c in self.checks)

    @property
    def error_count(self):
        """Count of failed error-level checks."""
        return sum(1 for c in self.checks if c.severity == Severity.ERROR and not c.passed)

    @property
    def warning_count(self):
        """Count of failed warning-level checks."""
        return sum(1 for c in self.checks if c.severity == Severity.WARN and not c.passed)


class SVGDocument(BaseModel):
    """Final output of a run: SVG text plus summary metadata."""
    width: int
    height: int
    svg: str
    byte_size: int
    palette_size: int
    fallback_mode: bool = False
    path_count: int = 0
    layer_path_counts: Dict[str, int] = Field(default_factory=dict)
    precision: int = 2
    states: List[PipelineState] = Field(default_factory=list)
    diagnostics: List[Diagnostic] = Field(default_factory=list)
    validation: ValidationReport = Field(default_factory=ValidationReport)

    model_config = ConfigDict(extra="forbid")

    @property
    def layer_count(self):
        return len(self.layer_path_counts)

    def diagnostics_of(self, kind):
        return [d for d in self.diagnostics if d.kind == kind]


class BatchItem(BaseModel):
    """Outcome of one image in a batch run: a document or the error that stopped it."""
    index: int
    name: str
    document: Optional[SVGDocument] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @property
    def ok(self):
        return self.document is not None


# ID generation functions for deterministic outputs

def generate_path_id(fill, points, round_digits=1):
    """
    Generate deterministic path ID from fill color and outline coordinates.

    Rounds coordinates to avoid floating point instability.
    """
    if not points:
        return f"path_{fill.lstrip('#')}_empty"

    rounded = [[round(p[0], round_digits), round(p[1], round_digits)] for p in points]
    data = f"{fill}:{rounded}"
    h = hashlib.sha256(data.encode()).hexdigest()[:12]
    return f"path_{h}"
