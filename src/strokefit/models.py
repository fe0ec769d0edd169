"""
Pydantic data models for strokefit.

Every fit result, segment and equation is a validated, immutable model.
Field names are snake_case in Python and camelCase on the wire
(``model_dump(by_alias=True)``).
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

EPSILON = 1e-9


class _Model(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


PointField = Annotated[List[float], Field(min_length=2, max_length=2)]


class PrimitiveKind(str, Enum):
    """Geometric primitive carried by a Segment."""
    LINEAR = "linear"
    QUADRATIC = "quadratic"
    CUBIC = "cubic"
    ARC = "arc"
    CIRCLE = "circle"
    ELLIPSE = "ellipse"


class FailureReason(str, Enum):
    """Why a fitter declined to produce a result."""
    INSUFFICIENT_INPUT = "insufficient_input"
    DEGENERATE_GEOMETRY = "degenerate_geometry"
    CONSTRAINT_VIOLATION = "constraint_violation"
    NUMERIC_SINGULARITY = "numeric_singularity"
    TOLERANCE_EXCEEDED = "tolerance_exceeded"


class EquationKind(str, Enum):
    """Canonical equation families produced by the equation builder."""
    LINEAR = "linear"
    CONSTANT = "constant"
    VERTICAL = "vertical"
    QUADRATIC = "quadratic"
    CIRCLE = "circle"
    ELLIPSE = "ellipse"
    QUADRATIC_BEZIER = "quadraticBezier"
    CUBIC_BEZIER = "cubicBezier"
    ARC = "arc"
    LABEL = "label"


class Domain(_Model):
    """Axis-aligned extent; degenerate spans are widened to EPSILON."""
    x_min: float
    x_max: float
    y_min: float
    y_max: float
    
    @model_validator(mode="before")
    @classmethod
    def _clamp_spans(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for low, high in (("x_min", "x_max"), ("y_min", "y_max")):
            low_key = low if low in data else to_camel(low)
            high_key = high if high in data else to_camel(high)
            if low_key in data and high_key in data:
                if data[high_key] - data[low_key] < EPSILON:
                    data[high_key] = data[low_key] + EPSILON
        return data
    
    @property
    def width(self):
        return self.x_max - self.x_min
    
    @property
    def height(self):
        return self.y_max - self.y_min


# Segments

class FitMetrics(_Model):
    """Residual statistics for one fitted primitive."""
    rms: float = 0.0
    max_error: float = 0.0
    coverage: Optional[float] = None


class LinearSegment(_Model):
    kind: Literal["linear"] = "linear"
    start: PointField
    end: PointField
    metrics: FitMetrics = Field(default_factory=FitMetrics)


class QuadraticSegment(_Model):
    kind: Literal["quadratic"] = "quadratic"
    control_points: List[PointField] = Field(..., min_length=3, max_length=3)
    metrics: FitMetrics = Field(default_factory=FitMetrics)


class CubicSegment(_Model):
    kind: Literal["cubic"] = "cubic"
    control_points: List[PointField] = Field(..., min_length=4, max_length=4)
    metrics: FitMetrics = Field(default_factory=FitMetrics)


class ArcSegment(_Model):
    """Circular arc; angles in radians, sweep_direction +1 counter-clockwise."""
    kind: Literal["arc"] = "arc"
    center: PointField
    radius: float = Field(..., gt=0.0)
    start_angle: float
    end_angle: float
    sweep_direction: Literal[-1, 1] = 1
    start: PointField
    end: PointField
    metrics: FitMetrics = Field(default_factory=FitMetrics)


class CircleSegment(_Model):
    kind: Literal["circle"] = "circle"
    center: PointField
    radius: float = Field(..., gt=0.0)
    metrics: FitMetrics = Field(default_factory=FitMetrics)


class EllipseSegment(_Model):
    """Ellipse with rotation in radians."""
    kind: Literal["ellipse"] = "ellipse"
    center: PointField
    radius_x: float = Field(..., gt=0.0)
    radius_y: float = Field(..., gt=0.0)
    rotation: float = 0.0
    metrics: FitMetrics = Field(default_factory=FitMetrics)


Segment = Annotated[
    Union[LinearSegment, QuadraticSegment, CubicSegment, ArcSegment, CircleSegment, EllipseSegment],
    Field(discriminator="kind"),
]


class Knot(_Model):
    """Spline knot with its removal priority (0 = kept longest)."""
    value: float
    priority: int
    diff: float = 0.0


# Equations

class EquationDomain(_Model):
    start: float
    end: float


class ParameterRange(_Model):
    variable: str = "t"
    start: str
    end: str


class LinearParams(_Model):
    kind: Literal["linear"] = "linear"
    slope: float
    intercept: float
    point: PointField


class ConstantParams(_Model):
    kind: Literal["constant"] = "constant"
    y: float


class VerticalParams(_Model):
    kind: Literal["vertical"] = "vertical"
    x: float


class QuadraticParams(_Model):
    """Vertex form y = a (x - h)^2 + k with vertex (h, k)."""
    kind: Literal["quadratic"] = "quadratic"
    a: float
    vertex: PointField


class CircleParams(_Model):
    kind: Literal["circle"] = "circle"
    center: PointField
    radius: float


class EllipseParams(_Model):
    kind: Literal["ellipse"] = "ellipse"
    center: PointField
    radius_x: float
    radius_y: float
    rotation: float = 0.0


class BezierParams(_Model):
    kind: Literal["bezier"] = "bezier"
    control_points: List[PointField] = Field(..., min_length=3, max_length=4)


class ArcParams(_Model):
    kind: Literal["arc"] = "arc"
    center: PointField
    radius: float
    start_angle: float
    end_angle: float
    direction: Literal[-1, 1] = 1


class LabelParams(_Model):
    kind: Literal["label"] = "label"
    text: str


EquationParams = Annotated[
    Union[LinearParams, ConstantParams, VerticalParams, QuadraticParams, CircleParams,
          EllipseParams, BezierParams, ArcParams, LabelParams],
    Field(discriminator="kind"),
]


class EquationMeta(_Model):
    """Fixed optional context attached to an equation."""
    segment_index: Optional[int] = None
    primitive: Optional[PrimitiveKind] = None
    quantized: Optional[bool] = None
    source: Optional[str] = None


class Equation(_Model):
    """Canonical formula for one fitted primitive."""
    type: EquationKind
    formula: str
    latex: str
    domain: Optional[EquationDomain] = None
    domain_axis: Optional[Literal["x", "y", "t"]] = None
    parameter_range: Optional[ParameterRange] = None
    params: EquationParams
    precision: int = 3
    meta: Optional[EquationMeta] = None


# Results

class Diagnostics(_Model):
    """Outcome details; reason is set whenever success is false."""
    reason: Optional[FailureReason] = None
    message: str = ""
    context: Dict[str, Any] = Field(default_factory=dict)


class ExportData(_Model):
    """Everything needed to rebuild a result's SVG path."""
    fitter: str
    segments: List[Segment] = Field(default_factory=list)
    closed: bool = False
    shape: Optional[str] = None
    knot_parameters: List[float] = Field(default_factory=list)


class FitResult(_Model):
    """Immutable result of one approximate() call."""
    success: bool
    type: str
    svg_path: str = ""
    latex_equations: List[Equation] = Field(default_factory=list)
    segments: List[Segment] = Field(default_factory=list)
    knots: List[PointField] = Field(default_factory=list)
    domain: Optional[Domain] = None
    export_data: Optional[ExportData] = None
    diagnostics: Diagnostics = Field(default_factory=Diagnostics)
    
    @property
    def primitive_kinds(self):
        """Kinds of the fitted segments, in order."""
        return [seg.kind for seg in self.segments]
