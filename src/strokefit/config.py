"""
Configuration management for strokefit.

Every fitter receives an immutable options value. Defaults live on the
dataclasses below; partial overrides are merged per call and YAML files can
supply project-wide settings.
"""

import math
import os
import re
from dataclasses import asdict, dataclass, field, fields, replace

import yaml

from strokefit.tracer import get_tracer


@dataclass(frozen=True)
class LinearConfig:
    """Options for the single straight-line fitter."""
    linearity_threshold: float = 0.95
    percent_tolerance: float = 0.1
    vertical_slope_threshold: float = 10.0
    horizontal_slope_threshold: float = 0.1
    snap: bool = False
    quantize_control_axis: bool = False


@dataclass(frozen=True)
class PiecewiseLinearConfig:
    """Options for the polyline fitter."""
    segment_linearity_threshold: float = 0.93
    percent_tolerance: float = 0.1
    vertical_slope_threshold: float = 10.0
    horizontal_slope_threshold: float = 0.1
    simplify_tolerance: float = 0.02  # normalized units


@dataclass(frozen=True)
class CircleConfig:
    """Options for the circle / ellipse fitter."""
    enable_ellipse: bool = True
    prefer_ellipse: bool = False
    quantization_enabled: bool = False
    quantize_center: bool = True
    quantize_axes: bool = True
    max_eccentricity: float = 0.8
    circle_snap_ratio: float = 0.08
    smooth_window: int = 5
    resample_count: int = 128
    prune_tolerance: float = 0.0
    closed: bool = True
    circle_rms_tolerance: float = 0.015
    ellipse_rms_tolerance: float = 0.02
    max_endpoint_gap_ratio: float = 0.4
    min_coverage_ratio: float = 0.6


@dataclass(frozen=True)
class SingleQuadraticConfig:
    """Options for the single quadratic Bezier fitter."""
    smooth_window: int = 5
    resample_count: int = 96
    prune_tolerance: float = 0.0
    closed: bool = False
    extrema_prominence_ratio: float = 0.04
    extrema_persistence: int = 3
    curvature_threshold: float = 0.21
    curvature_persistence: int = 2
    monotonic_tolerance_ratio: float = 0.05
    error_tolerance_ratio: float = 0.075
    allowed_extrema: int = 2
    allowed_curvature_flips: int = 1
    min_stroke_length: float = 0.5
    min_diagonal: float = 0.25
    closure_ratio: float = 0.04


@dataclass(frozen=True)
class QuadraticChainConfig:
    """Options for the chained quadratic Bezier fitter."""
    max_segments: int = 8
    segment_count: int = 0  # 0 derives the count from the sample count
    points_per_segment: int = 32
    enforce_c1: bool = True
    smooth_window: int = 5
    resample_count: int = 128
    prune_tolerance: float = 0.0
    closed: bool = False


@dataclass(frozen=True)
class BSplineConfig:
    """Options for the quadratic regression spline fitter."""
    min_knots: int = 2
    max_knots: int = 10
    knot_count: int = 0  # 0 uses max_knots
    min_knot_distance: float = 0.05
    snap: bool = False
    monotonic_tolerance_ratio: float = 1e-3
    clean_samples: bool = True


@dataclass(frozen=True)
class SelectiveConfig:
    """Options for the multi-primitive optimizer."""
    smoothing_window: int = 0
    resample_count: int = 160
    tolerance: float = 0.05
    max_span: int = 48
    auto_segments: bool = True
    segment_count: int = 6
    simplicity_gain: float = 0.3
    smooth_bias: float = 0.4
    enable_linear: bool = True
    enable_quadratic: bool = True
    enable_cubic: bool = True
    enable_arc: bool = True
    quantization_enabled: bool = True
    quant_level_offset: int = 0
    angle_threshold_degrees: float = 35.0
    dedupe_tolerance: float = 1e-4
    closed: bool = False


@dataclass(frozen=True)
class PanelConfig:
    """User-facing detail controls shared by all fitters."""
    show_knots_default: bool = True
    snap: bool = False
    error_threshold: float = 30.0
    max_knots: int = 5
    sampling_rate: int = 1


@dataclass(frozen=True)
class TracingConfig:
    """Configuration for runtime tracing."""
    enabled: bool = False
    level: str = "INFO"
    file_path: str = None
    json_output: bool = False


@dataclass(frozen=True)
class ApproximatorSettings:
    """Complete settings for every fitter category."""
    panel: PanelConfig = field(default_factory=PanelConfig)
    linear: LinearConfig = field(default_factory=LinearConfig)
    piecewise_linear: PiecewiseLinearConfig = field(default_factory=PiecewiseLinearConfig)
    single_circle: CircleConfig = field(default_factory=CircleConfig)
    single_quadratic: SingleQuadraticConfig = field(default_factory=SingleQuadraticConfig)
    quadratic_chain: QuadraticChainConfig = field(default_factory=QuadraticChainConfig)
    quadratic_bspline: BSplineConfig = field(default_factory=BSplineConfig)
    selective: SelectiveConfig = field(default_factory=SelectiveConfig)
    tracing: TracingConfig = field(default_factory=TracingConfig)


CATEGORY_KEYS = [
    "linear",
    "piecewise_linear",
    "quadratic_bspline",
    "single_quadratic",
    "single_circle",
    "quadratic_chain",
    "selective",
]

PANEL_KEYS = ["show_knots_default", "snap", "error_threshold", "max_knots", "sampling_rate"]

# camelCase type tags whose snake_case form differs from the settings field
CATEGORY_ALIASES = {"quadratic_b_spline": "quadratic_bspline"}

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def to_snake(key):
    """Convert a camelCase option name to snake_case."""
    return _CAMEL_RE.sub("_", key).lower()


def with_overrides(config, overrides=None):
    """
    Shallow-merge a partial options mapping onto a config value.
    
    Keys may be snake_case or camelCase. Unknown keys are ignored and
    reported at WARN level. Returns a new config; the input is untouched.
    """
    if not overrides:
        return config
    
    known = {f.name for f in fields(config)}
    changes = {}
    for key, value in overrides.items():
        name = to_snake(key)
        if name in known:
            changes[name] = value
        else:
            get_tracer().event(f"Ignoring unknown option {key!r}", level="WARN",
                               config=type(config).__name__)
    
    return replace(config, **changes) if changes else config


def _clamp(value, low, high):
    return min(high, max(low, value))


def _panel_overrides(panel, overrides, errors, applied):
    """Apply validated panel overrides, clamping numeric ranges."""
    changes = {}
    
    for key, value in overrides.items():
        name = to_snake(key)
        if name in ("show_knots_default", "snap"):
            changes[name] = bool(value)
            applied.append(f"panel:{name}")
            continue
        
        if name not in ("error_threshold", "max_knots", "sampling_rate"):
            continue
        
        try:
            num = float(value)
        except (TypeError, ValueError):
            num = math.nan
        if not math.isfinite(num):
            errors.append(f"panel.{name}")
            continue
        
        if name == "error_threshold":
            changes[name] = round(round(_clamp(num, 1.0, 30.0) / 0.1) * 0.1, 1)
        elif name == "max_knots":
            changes[name] = int(round(_clamp(num, 2, 10)))
        else:
            changes[name] = int(round(_clamp(num, 1, 10)))
        applied.append(f"panel:{name}")
    
    return replace(panel, **changes)


def merge_settings(base, partial):
    """
    Merge a partial settings mapping into an ApproximatorSettings value.
    
    Accepts either nested ``{"panel": {...}, "selective": {...}}`` mappings
    or bare panel keys at the top level.
    
    Returns:
        (settings, errors, applied) where errors lists rejected panel keys
        and applied lists what changed.
    """
    errors = []
    applied = []
    if not isinstance(partial, dict):
        return base, errors, applied
    
    normalized = {CATEGORY_ALIASES.get(to_snake(k), to_snake(k)): v for k, v in partial.items()}
    
    panel_overrides = dict(normalized.get("panel") or {})
    for key in PANEL_KEYS:
        if key in normalized:
            panel_overrides[key] = normalized[key]
    
    changes = {}
    if panel_overrides:
        changes["panel"] = _panel_overrides(base.panel, panel_overrides, errors, applied)
    
    for key in CATEGORY_KEYS + ["tracing"]:
        value = normalized.get(key)
        if isinstance(value, dict):
            changes[key] = with_overrides(getattr(base, key), value)
            applied.append(f"category:{key}")
    
    return replace(base, **changes), errors, applied


def apply_panel(config, panel):
    """
    Push the panel's detail controls into one fitter's options.
    
    The spline takes its knot budget from the panel; snapping is on when
    either the panel or the fitter asks for it.
    """
    if isinstance(config, BSplineConfig):
        return replace(config, max_knots=panel.max_knots,
                       min_knots=min(config.min_knots, panel.max_knots),
                       snap=config.snap or panel.snap)
    if isinstance(config, LinearConfig):
        return replace(config, snap=config.snap or panel.snap)
    return config


def load_config(config_path=None):
    """
    Load settings from a YAML file.
    
    Falls back to defaults for a missing file and for any missing values.
    """
    settings = ApproximatorSettings()
    
    if config_path and os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f) or {}
        
        settings, errors, _ = merge_settings(settings, yaml_data)
        for key in errors:
            get_tracer().event(f"Invalid setting {key} in {config_path}", level="WARN")
    
    return settings


def save_default_config(path):
    """Save default configuration to a YAML file for reference."""
    yaml_data = asdict(ApproximatorSettings())
    
    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(yaml_data, f, default_flow_style=False, sort_keys=False)
