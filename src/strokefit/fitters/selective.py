"""
Selective multi-primitive optimizer.

The stroke is cut at sharp corners into mandatory sections. Inside each
section a shortest-path search over sample-index pairs chooses, for every
span, the best of the enabled primitives (line, quadratic, cubic, arc) and
the cheapest chain of spans overall, where a span costs its RMS error in
tolerance units plus a fixed per-segment penalty.
"""

import math
from dataclasses import dataclass

import numpy as np

from strokefit.config import SelectiveConfig
from strokefit.equations import builder
from strokefit.fitters.base import (
    Fitter, NumericSingularityError, build_result, failure, insufficient, power_of_ten_step,
)
from strokefit.fitters.primitives import (
    CANDIDATE_ORDER, FITTERS, Candidate, candidate_distances, end_tangent, measure,
    quantize_candidate, start_tangent, to_segment, transform_candidate, with_end_tangent,
    with_start, with_start_tangent,
)
from strokefit.fitters.quadratic_chain import split_ranges
from strokefit.geometry.preprocess import as_points, normalize_symmetric, preprocess
from strokefit.geometry.simplify import remove_duplicate_points
from strokefit.models import EquationMeta, ExportData, FailureReason, PrimitiveKind
from strokefit.tracer import get_tracer, trace

MIN_POINTS = 2
REJECT_FACTOR = 3.0
# errors closer than this count as a tie
TIE_EPSILON = 1e-12


def grid_step(points, level_offset=0):
    """Power-of-ten grid for the stroke's larger extent, shifted by ``level_offset`` decades."""
    pts = as_points(points)
    span = float(np.max(np.ptp(pts, axis=0))) if len(pts) else 0.0
    return power_of_ten_step(span, low=-2, high=2) * 10.0 ** level_offset


def mandatory_splits(points, angle_threshold_degrees):
    """Interior indices where the stroke turns sharper than the threshold or reverses."""
    pts = as_points(points)
    threshold = math.radians(angle_threshold_degrees)
    splits = []
    for i in range(1, len(pts) - 1):
        v0 = pts[i] - pts[i - 1]
        v1 = pts[i + 1] - pts[i]
        n0 = float(np.hypot(*v0))
        n1 = float(np.hypot(*v1))
        if n0 <= 0 or n1 <= 0:
            continue
        dot = float(v0 @ v1)
        angle = math.acos(max(-1.0, min(1.0, dot / (n0 * n1))))
        if dot < 0 or angle > threshold:
            splits.append(i)
    return splits


def build_sections(point_count, splits):
    """Inclusive index ranges between consecutive splits; neighbours share a sample."""
    bounds = [0] + [i for i in sorted(set(splits)) if 0 < i < point_count - 1] + [point_count - 1]
    return [(a, b) for a, b in zip(bounds[:-1], bounds[1:]) if b > a]


def enabled_kinds(opts):
    flags = {
        PrimitiveKind.LINEAR: opts.enable_linear,
        PrimitiveKind.QUADRATIC: opts.enable_quadratic,
        PrimitiveKind.CUBIC: opts.enable_cubic,
        PrimitiveKind.ARC: opts.enable_arc,
    }
    return [kind for kind in CANDIDATE_ORDER if flags[kind]]


@dataclass
class _Span:
    """One chosen span: its index range, the fitted candidate and its unquantized fit."""
    start: int
    end: int
    candidate: Candidate
    raw: Candidate
    rms: float
    max_error: float


class SelectiveFitter(Fitter):
    """Chooses the best mix of lines, Bezier curves and arcs for a stroke."""
    
    type_name = "selective"
    config_class = SelectiveConfig
    
    def _best_fit(self, points, kinds, prepare):
        """Lowest-error candidate over the enabled kinds; earlier kinds win ties."""
        best = None
        for kind in kinds:
            try:
                raw = FITTERS[kind](points)
            except NumericSingularityError as exc:
                get_tracer().event(f"{kind.value} candidate skipped: {exc}", level="DEBUG")
                continue
            if raw is None:
                continue
            candidate = prepare(raw)
            if candidate is None:
                continue
            rms, max_error = measure(points, candidate)
            if not math.isfinite(rms):
                continue
            if best is None or rms < best[2] - TIE_EPSILON:
                best = (candidate, raw, rms, max_error)
        return best
    
    def _plan_auto(self, points, offset, kinds, prepare, opts):
        """Shortest path over index pairs; None when no chain stays under the reject bound."""
        n = len(points)
        max_span = max(2, min(opts.max_span, n - 1))
        limit = REJECT_FACTOR * opts.tolerance
        cost = [math.inf] * n
        back = [None] * n
        cost[0] = 0.0
        
        for j in range(1, n):
            for i in range(max(0, j - max_span), j):
                if cost[i] == math.inf:
                    continue
                fit = self._best_fit(points[i:j + 1], kinds, prepare)
                if fit is None or fit[2] > limit:
                    continue
                total = cost[i] + fit[2] / opts.tolerance + opts.simplicity_gain
                if total < cost[j]:
                    cost[j] = total
                    back[j] = (i, fit)
        
        if back[n - 1] is None:
            return None, math.inf
        spans = []
        j = n - 1
        while j > 0:
            i, (candidate, raw, rms, max_error) = back[j]
            spans.append(_Span(offset + i, offset + j, candidate, raw, rms, max_error))
            j = i
        spans.reverse()
        return spans, cost[n - 1]
    
    def _plan_fixed(self, points, offset, pieces, kinds, prepare, opts):
        """Equal breakpoints; each piece takes its lowest-error candidate."""
        spans = []
        total = 0.0
        for start, end in split_ranges(len(points), pieces):
            fit = self._best_fit(points[start:end + 1], kinds, prepare)
            if fit is None:
                return None, math.inf
            candidate, raw, rms, max_error = fit
            spans.append(_Span(offset + start, offset + end, candidate, raw, rms, max_error))
            total += rms / opts.tolerance + opts.simplicity_gain
        return spans, total
    
    def _blend_tangents(self, spans, section_starts, bias):
        """Pull Bezier handles at smooth joints toward a shared tangent."""
        for prev, nxt in zip(spans[:-1], spans[1:]):
            if nxt.start in section_starts:
                continue
            t0 = end_tangent(prev.candidate)
            t1 = start_tangent(nxt.candidate)
            angle = math.acos(max(-1.0, min(1.0, float(t0 @ t1))))
            if angle >= math.pi / 2:
                continue
            shared = t0 + t1
            shared = shared / np.linalg.norm(shared)
            out_dir = (1 - bias) * t0 + bias * shared
            in_dir = (1 - bias) * t1 + bias * shared
            prev.candidate = with_end_tangent(prev.candidate, out_dir / np.linalg.norm(out_dir))
            nxt.candidate = with_start_tangent(nxt.candidate, in_dir / np.linalg.norm(in_dir))
    
    @trace(label="selective_approximate")
    def approximate(self, points, domain=None, overrides=None):
        opts = self.options(overrides)
        tracer = get_tracer()
        
        raw = as_points(points)
        if len(raw) < MIN_POINTS:
            return insufficient(self.type_name, len(raw), MIN_POINTS, domain=domain)
        
        deduped = remove_duplicate_points(raw, opts.dedupe_tolerance)
        if len(deduped) < MIN_POINTS:
            return failure(self.type_name, FailureReason.DEGENERATE_GEOMETRY,
                           "stroke collapses to a single point", domain=domain,
                           point_count=len(raw))
        
        stroke = preprocess(deduped, domain=domain, smooth_window=opts.smoothing_window,
                            resample_count=opts.resample_count, closed=opts.closed)
        work = stroke.points
        used_domain = stroke.domain
        if float(np.max(np.ptp(work, axis=0))) <= opts.dedupe_tolerance:
            return failure(self.type_name, FailureReason.DEGENERATE_GEOMETRY,
                           "stroke has no extent", domain=used_domain, point_count=len(work))
        
        normalized, center, scale = normalize_symmetric(work)
        kinds = enabled_kinds(opts)
        if not kinds:
            return failure(self.type_name, FailureReason.CONSTRAINT_VIOLATION,
                           "no primitive kinds enabled", domain=used_domain)
        
        quantize = bool(opts.quantization_enabled)
        step = grid_step(work, opts.quant_level_offset) if quantize else None
        
        def prepare(candidate):
            if not quantize:
                return candidate
            snapped = quantize_candidate(transform_candidate(candidate, scale, center), step)
            if snapped is None:
                return None
            return transform_candidate(snapped, 1.0 / scale, -center / scale)
        
        sections = build_sections(len(normalized), mandatory_splits(normalized,
                                                                    opts.angle_threshold_degrees))
        tracer.event(f"Split into {len(sections)} mandatory sections", level="DEBUG",
                     points=len(normalized))
        
        total_steps = max(1, len(normalized) - 1)
        spans = []
        section_costs = []
        for start, end in sections:
            piece = normalized[start:end + 1]
            if opts.auto_segments:
                planned, cost = self._plan_auto(piece, start, kinds, prepare, opts)
            else:
                share = opts.segment_count * (end - start) / total_steps
                pieces = max(1, min(end - start, int(round(share))))
                planned, cost = self._plan_fixed(piece, start, pieces, kinds, prepare, opts)
            if planned is None:
                return failure(self.type_name, FailureReason.TOLERANCE_EXCEEDED,
                               "no segmentation within the error bound",
                               domain=used_domain, section=[start, end],
                               bound=REJECT_FACTOR * opts.tolerance)
            tracer.event(f"Section {start}-{end}: {len(planned)} segments", level="DEBUG",
                         cost=cost)
            section_costs.append(float(cost))
            spans.extend(planned)
        
        if opts.smooth_bias > 0 and not quantize:
            self._blend_tangents(spans, {start for start, _ in sections}, opts.smooth_bias)
        
        # world coordinates, dropping spans that collapse on the grid
        chain = []
        for span in spans:
            world = transform_candidate(span.candidate, scale, center)
            if quantize:
                world = quantize_candidate(world, step)
                if world is None:
                    tracer.event(f"Dropped collapsed span {span.start}-{span.end}", level="DEBUG")
                    continue
            if chain and not np.array_equal(chain[-1][1].end, world.start):
                world = with_start(world, chain[-1][1].end)
            chain.append((span, world))
        
        if not chain:
            return failure(self.type_name, FailureReason.DEGENERATE_GEOMETRY,
                           "all segments collapsed on the grid", domain=used_domain,
                           grid_step=step)
        
        segments = []
        equations = []
        arcs = []
        raw_sq = quant_sq = 0.0
        sample_count = 0
        max_error = 0.0
        for index, (span, world) in enumerate(chain):
            samples = work[span.start:span.end + 1]
            d = candidate_distances(samples, world)
            d_raw = candidate_distances(samples, transform_candidate(span.raw, scale, center))
            quant_sq += float(np.sum(d * d))
            raw_sq += float(np.sum(d_raw * d_raw))
            sample_count += len(d)
            seg_max = float(d.max()) if d.size else 0.0
            max_error = max(max_error, seg_max)
            
            segment = to_segment(world, rms=float(np.sqrt(np.mean(d * d))) if d.size else 0.0,
                                 max_error=seg_max)
            segments.append(segment)
            equations.append(builder.equation_for_segment(segment, meta=EquationMeta(
                segment_index=index, primitive=world.kind, quantized=quantize,
                source=self.type_name)))
            if world.kind == PrimitiveKind.ARC:
                arcs.append({
                    "segment_index": index,
                    "sweep_direction": segment.sweep_direction,
                    "large_arc": abs(world.sweep) > math.pi,
                })
        
        knots = [chain[0][1].start.tolist()]
        for _, world in chain:
            point = world.end.tolist()
            if point != knots[-1]:
                knots.append(point)
        
        raw_rms = math.sqrt(raw_sq / sample_count) if sample_count else 0.0
        quantized_rms = math.sqrt(quant_sq / sample_count) if sample_count else 0.0
        tracer.event(f"Selected {len(segments)} segments", level="DEBUG",
                     kinds=[seg.kind for seg in segments], rms=quantized_rms)
        
        return build_result(
            self.type_name,
            segments,
            equations,
            knots=knots,
            domain=used_domain,
            export_data=ExportData(fitter=self.type_name, segments=segments, closed=opts.closed),
            rms=quantized_rms,
            max_error=max_error,
            raw_rms=raw_rms,
            quantized_rms=quantized_rms,
            grid_step=step,
            section_count=len(sections),
            section_costs=section_costs,
            segment_count=len(segments),
            arcs=arcs,
            point_count=len(work),
        )
