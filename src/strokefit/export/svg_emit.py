"""
SVG emission for fit results.

Generates an SVG document with one path per successful result and,
optionally, markers at the result knots.
"""

import svgwrite

from strokefit.tracer import get_tracer, trace


@trace(label="emit_results_svg")
def emit_results_svg(results, width, height, stroke_width=1.5, stroke_color="black",
                     show_knots=False, knot_radius=2.0, knot_color="red"):
    """
    Create an SVG document containing every successful result's path.
    
    Args:
        results: list of FitResult objects
        width: canvas width in pixels
        height: canvas height in pixels
        stroke_width: line width
        stroke_color: line color
        show_knots: draw a dot at each knot
    
    Returns:
        svgwrite.Drawing object
    """
    tracer = get_tracer()
    
    dwg = svgwrite.Drawing(size=(f"{width}px", f"{height}px"))
    dwg.viewbox(0, 0, width, height)
    
    dwg.defs.add(dwg.style("""
        .fit { stroke-linecap: round; stroke-linejoin: round; }
    """))
    
    fit_group = dwg.g(id="fits", fill="none", stroke=stroke_color,
                      stroke_width=stroke_width, class_="fit")
    knot_group = dwg.g(id="knots", fill=knot_color, stroke="none")
    
    emitted = 0
    for index, result in enumerate(results):
        if not result.success or not result.svg_path:
            continue
        fit_group.add(dwg.path(d=result.svg_path, id=f"fit-{index}-{result.type}"))
        emitted += 1
        if show_knots:
            for x, y in result.knots:
                knot_group.add(dwg.circle(center=(x, y), r=knot_radius))
    
    dwg.add(fit_group)
    if show_knots:
        dwg.add(knot_group)
    
    tracer.event(f"SVG emitted with {emitted} of {len(results)} results")
    
    return dwg
