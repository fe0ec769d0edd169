"""
Chained quadratic Bezier fitting.

The resampled stroke is cut into near-equal runs of samples and each run
gets its own single-quadratic fit. Tangent continuity is then imposed by
moving each entry control point onto the previous exit tangent; the
joints themselves are not re-fitted.
"""

import math

import numpy as np

from strokefit.config import QuadraticChainConfig
from strokefit.equations import builder
from strokefit.fitters.base import Fitter, build_result, failure, insufficient
from strokefit.fitters.quadratic_bezier import fit_quadratic_control, quadratic_residuals
from strokefit.geometry.preprocess import as_points, denormalize_points, preprocess
from strokefit.models import (
    EquationMeta, ExportData, FailureReason, FitMetrics, PrimitiveKind, QuadraticSegment,
)
from strokefit.tracer import get_tracer, trace

MIN_POINTS = 3


def chain_segment_count(point_count, opts):
    """Number of pieces: the explicit override, else one per ``points_per_segment`` samples."""
    if opts.segment_count and opts.segment_count > 0:
        return int(opts.segment_count)
    estimate = max(1, math.floor(point_count / max(1, opts.points_per_segment) + 0.5))
    return min(opts.max_segments, estimate)


def split_ranges(point_count, segment_count):
    """
    Index ranges (start, end), inclusive, covering 0..point_count-1.
    
    Neighbouring ranges share their boundary sample. Each range spans at
    least two steps where the stroke allows it.
    """
    ranges = []
    start = 0
    last = point_count - 1
    for seg in range(segment_count):
        remaining = segment_count - seg
        chunk = max(2, (last - start) // remaining)
        end = last if seg == segment_count - 1 else min(last, start + chunk)
        if end <= start:
            end = min(last, start + 2)
        ranges.append((start, end))
        start = end
        if start >= last:
            break
    return ranges


def enforce_c1(previous, controls):
    """Place the entry control point on the previous segment's exit tangent."""
    _, prev_p1, prev_p2 = previous
    p0, _, p2 = controls
    return [p0, p0 + (prev_p2 - prev_p1), p2]


class QuadraticChainFitter(Fitter):
    """Fits a C1-continuous chain of quadratic Bezier segments."""
    
    type_name = "quadraticChain"
    config_class = QuadraticChainConfig
    
    @trace(label="quadratic_chain_approximate")
    def approximate(self, points, domain=None, overrides=None):
        opts = self.options(overrides)
        tracer = get_tracer()
        
        raw = as_points(points)
        if len(raw) < MIN_POINTS:
            return insufficient(self.type_name, len(raw), MIN_POINTS, domain=domain)
        
        stroke = preprocess(raw, domain=domain, smooth_window=opts.smooth_window,
                            resample_count=opts.resample_count,
                            prune_tolerance=opts.prune_tolerance, closed=opts.closed)
        normalized = stroke.normalized
        total = len(normalized)
        if total < MIN_POINTS:
            return insufficient(self.type_name, total, MIN_POINTS, domain=stroke.domain)
        
        count = chain_segment_count(total, opts)
        ranges = split_ranges(total, count)
        tracer.event(f"Chain split into {len(ranges)} pieces", level="DEBUG", requested=count)
        
        controls_list = []
        segments = []
        equations = []
        squared = 0.0
        samples = 0
        previous = None
        
        for index, (start, end) in enumerate(ranges):
            piece = normalized[start:end + 1]
            fit = fit_quadratic_control(piece)
            controls = list(denormalize_points(np.array(fit), stroke.domain))
            if opts.enforce_c1 and previous is not None:
                controls = enforce_c1(previous, controls)
            
            world = stroke.points[start:end + 1]
            residuals = quadratic_residuals(world, *controls)
            squared += float(np.sum(residuals ** 2))
            samples += len(residuals)
            
            cps = [c.tolist() for c in controls]
            metrics = FitMetrics(rms=float(np.sqrt(np.mean(residuals ** 2))),
                                 max_error=float(residuals.max()))
            segments.append(QuadraticSegment(control_points=cps, metrics=metrics))
            equations.append(builder.quadratic_bezier(*cps, meta=EquationMeta(
                segment_index=index, primitive=PrimitiveKind.QUADRATIC, source=self.type_name)))
            controls_list.append(cps)
            previous = controls
        
        if not segments:
            return failure(self.type_name, FailureReason.DEGENERATE_GEOMETRY,
                           "no segments generated", domain=stroke.domain, point_count=total)
        
        knots = [controls_list[0][0]] + [cps[2] for cps in controls_list]
        rms = math.sqrt(squared / samples) if samples else 0.0
        
        return build_result(
            self.type_name,
            segments,
            equations,
            knots=knots,
            domain=stroke.domain,
            export_data=ExportData(fitter=self.type_name, segments=segments),
            rms=rms,
            max_error=max(seg.metrics.max_error for seg in segments),
            segment_count=len(segments),
            point_count=total,
        )
