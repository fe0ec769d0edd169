"""
Fitter selection by type tag and SVG path reconstruction from stored results.
"""

import numpy as np

from strokefit.config import ApproximatorSettings, apply_panel
from strokefit.fitters.bspline import QuadraticBSplineFitter
from strokefit.fitters.circle import CircleFitter
from strokefit.fitters.linear import LinearFitter
from strokefit.fitters.piecewise_linear import PiecewiseLinearFitter
from strokefit.fitters.quadratic_bezier import SingleQuadraticFitter
from strokefit.fitters.quadratic_chain import QuadraticChainFitter
from strokefit.fitters.selective import SelectiveFitter
from strokefit.geometry.preprocess import as_points
from strokefit.models import Diagnostics, Equation, ExportData, FailureReason
from strokefit.paths import build_svg_path, segments_from_equations
from strokefit.tracer import get_tracer, trace

# type tag -> (fitter class, ApproximatorSettings field)
REGISTRY = {
    LinearFitter.type_name: (LinearFitter, "linear"),
    PiecewiseLinearFitter.type_name: (PiecewiseLinearFitter, "piecewise_linear"),
    CircleFitter.type_name: (CircleFitter, "single_circle"),
    SingleQuadraticFitter.type_name: (SingleQuadraticFitter, "single_quadratic"),
    QuadraticChainFitter.type_name: (QuadraticChainFitter, "quadratic_chain"),
    QuadraticBSplineFitter.type_name: (QuadraticBSplineFitter, "quadratic_bspline"),
    SelectiveFitter.type_name: (SelectiveFitter, "selective"),
}


def _entry(fit_type):
    try:
        return REGISTRY[fit_type]
    except KeyError:
        raise ValueError(
            f"Unknown fitter type {fit_type!r}; expected one of {sorted(REGISTRY)}"
        ) from None


def create_fitter(fit_type, settings=None):
    """Fitter instance for a type tag, configured from settings (defaults when None)."""
    fitter_class, key = _entry(fit_type)
    settings = settings if settings is not None else ApproximatorSettings()
    return fitter_class(apply_panel(getattr(settings, key), settings.panel))


def thin_samples(points, rate):
    """Every ``rate``-th sample, always keeping the last one."""
    if rate <= 1:
        return points
    pts = as_points(points)
    if len(pts) <= 2:
        return pts
    kept = pts[::rate]
    if (len(pts) - 1) % rate:
        kept = np.vstack([kept, pts[-1:]])
    return kept


def _check_error_threshold(result, points, threshold):
    """
    Downgrade a fit whose worst segment error exceeds ``threshold`` percent
    of the stroke's bounding-box diagonal. The geometry is kept.
    """
    if not result.success or not result.segments:
        return result
    pts = as_points(points)
    diagonal = float(np.hypot(*np.ptp(pts, axis=0))) if len(pts) else 0.0
    if diagonal == 0:
        return result
    
    worst = max(seg.metrics.max_error for seg in result.segments)
    limit = diagonal * threshold / 100.0
    if worst <= limit:
        return result
    
    get_tracer().event(f"{result.type} exceeds the error threshold", level="WARN",
                       max_error=worst, limit=limit)
    context = dict(result.diagnostics.context, max_error=worst, error_threshold=threshold)
    return result.model_copy(update={
        "success": False,
        "diagnostics": Diagnostics(reason=FailureReason.TOLERANCE_EXCEEDED,
                                   message="fit error exceeds the error threshold",
                                   context=context),
    })


@trace(label="dispatch_approximate")
def approximate(fit_type, points, domain=None, overrides=None, settings=None):
    """
    Run the fitter registered under ``fit_type``.
    
    The panel's sampling rate thins the stroke first and its error
    threshold bounds the accepted fit.
    """
    settings = settings if settings is not None else ApproximatorSettings()
    fitter = create_fitter(fit_type, settings)
    panel = settings.panel
    points = thin_samples(points, panel.sampling_rate)
    get_tracer().event(f"Dispatching to {type(fitter).__name__}", level="DEBUG",
                       points=len(points))
    result = fitter.approximate(points, domain=domain, overrides=overrides)
    return _check_error_threshold(result, points, panel.error_threshold)


def rebuild_svg_path(fit_type, export_data=None, equations=None, original_points=None):
    """
    Rebuild a result's SVG path.
    
    Stored export segments are used when present; otherwise the path is
    re-derived from the equations, oriented along ``original_points`` for
    fitters whose equations lose the drawing direction.
    
    Raises:
        ValueError: for an unknown type tag, or when neither export data
            nor equations are given
    """
    fitter_class, _ = _entry(fit_type)
    
    if export_data is not None:
        if not isinstance(export_data, ExportData):
            export_data = ExportData.model_validate(export_data)
        if export_data.segments:
            return build_svg_path(export_data.segments)
    
    if equations is None:
        raise ValueError("export_data with segments or equations are required")
    
    parsed = [eq if isinstance(eq, Equation) else Equation.model_validate(eq) for eq in equations]
    anchor_points = original_points if getattr(fitter_class, "orient_from_points", True) else None
    return build_svg_path(segments_from_equations(parsed, anchor_points))
