"""
Shared fitter plumbing: result construction, failure reporting and the
power-of-ten quantization helpers used by several fitters.
"""

import math

import numpy as np

from strokefit.config import with_overrides
from strokefit.models import Diagnostics, FailureReason, FitResult, FitMetrics
from strokefit.paths import build_svg_path
from strokefit.tracer import get_tracer


class NumericSingularityError(ArithmeticError):
    """An ill-conditioned system was met while fitting."""


class Fitter:
    """
    Base class for stroke fitters.
    
    Subclasses set ``type_name`` and ``config_class`` and implement
    ``approximate(points, domain=None, overrides=None)``.
    """
    
    type_name = ""
    config_class = None
    
    def __init__(self, config=None):
        self.config = config if config is not None else self.config_class()
    
    def options(self, overrides=None):
        """Per-call options: the fitter's config with overrides merged on top."""
        return with_overrides(self.config, overrides)


def failure(fit_type, reason, message, domain=None, **context):
    """Build a failed FitResult and report it at WARN level."""
    get_tracer().event(f"{fit_type} rejected: {message}", level="WARN", reason=reason)
    return FitResult(
        success=False,
        type=fit_type,
        domain=domain,
        diagnostics=Diagnostics(reason=reason, message=message, context=context),
    )


def insufficient(fit_type, count, minimum, domain=None):
    """Failure for strokes with too few samples."""
    return failure(
        fit_type,
        FailureReason.INSUFFICIENT_INPUT,
        f"at least {minimum} points are required",
        domain=domain,
        point_count=count,
    )


def build_result(fit_type, segments, equations, knots=None, domain=None, export_data=None,
                 success=True, reason=None, message="", **context):
    """
    Build a FitResult whose svg_path is derived from its segments.
    
    A result may carry geometry and still be unsuccessful (a gate failed
    after quantization); the reason says why.
    """
    return FitResult(
        success=success,
        type=fit_type,
        svg_path=build_svg_path(segments),
        latex_equations=equations,
        segments=segments,
        knots=[[float(x), float(y)] for x, y in (knots or [])],
        domain=domain,
        export_data=export_data,
        diagnostics=Diagnostics(reason=reason, message=message, context=context),
    )


def metrics_from_residuals(residuals, coverage=None):
    """FitMetrics from per-sample residual distances."""
    residuals = np.asarray(residuals, dtype=float)
    if residuals.size == 0:
        return FitMetrics(rms=0.0, max_error=0.0, coverage=coverage)
    return FitMetrics(
        rms=float(np.sqrt(np.mean(residuals ** 2))),
        max_error=float(np.max(np.abs(residuals))),
        coverage=coverage,
    )


def power_of_ten_step(span, low=-6, high=6):
    """Grid step 10**(floor(log10(span)) - 1), exponent clamped to [low, high]."""
    if not math.isfinite(span) or span <= 0:
        return 10.0 ** low
    exponent = math.floor(math.log10(span)) - 1
    return 10.0 ** max(low, min(high, exponent))


def round_to_step(value, step, digits=6):
    """Round to the nearest multiple of step, trimming float noise."""
    if step <= 0 or not math.isfinite(value):
        return value
    return round(round(value / step) * step, digits)
