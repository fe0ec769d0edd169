"""
Command-line interface for strokefit.

Provides commands for fitting a stroke file and writing a default config.
"""

import argparse
import json
import math
import os
import sys

from strokefit.config import load_config, save_default_config
from strokefit.dispatcher import REGISTRY, approximate
from strokefit.export.svg_emit import emit_results_svg
from strokefit.io.save_artifacts import save_result_json, save_svg, to_jsonable
from strokefit.models import Domain
from strokefit.tracer import configure_tracer, get_tracer


def main(argv=None):
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="strokefit: approximate hand-drawn strokes with analytic curves",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    
    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    
    # Fit command
    fit_parser = subparsers.add_parser("fit", help="Fit one stroke")
    fit_parser.add_argument(
        "--input", "-i",
        required=True,
        help="Stroke JSON: a list of [x, y] points or an object with 'points'",
    )
    fit_parser.add_argument(
        "--type", "-t",
        required=True,
        choices=sorted(REGISTRY),
        help="Fitter type",
    )
    fit_parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to YAML configuration file",
    )
    fit_parser.add_argument(
        "--out", "-o",
        default=None,
        help="Output directory for result.json and result.svg",
    )
    fit_parser.add_argument(
        "--trace",
        action="store_true",
        help="Enable runtime tracing",
    )
    fit_parser.add_argument(
        "--trace-level",
        default="INFO",
        choices=["ERROR", "WARN", "INFO", "DEBUG"],
        help="Trace log level",
    )
    fit_parser.add_argument(
        "--trace-file",
        default=None,
        help="Path to write trace logs",
    )
    fit_parser.add_argument(
        "--trace-json",
        action="store_true",
        help="Enable JSON trace output",
    )
    
    # Init config command
    init_parser = subparsers.add_parser("init-config", help="Create default config file")
    init_parser.add_argument(
        "--out", "-o",
        default="strokefit_config.yaml",
        help="Output path for config file",
    )
    
    args = parser.parse_args(argv)
    
    if args.command is None:
        parser.print_help()
        return 0
    
    if args.command == "fit":
        return handle_fit(args)
    elif args.command == "init-config":
        return handle_init_config(args)
    
    return 0


def load_stroke(path):
    """
    Read a stroke file.
    
    Returns:
        (points, domain, overrides)
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    
    if isinstance(data, list):
        return data, None, None
    
    domain = data.get("domain")
    if domain is not None:
        domain = Domain.model_validate(domain)
    return data["points"], domain, data.get("overrides")


def _canvas_size(result, points):
    if result.domain is not None:
        return max(1, math.ceil(result.domain.x_max)), max(1, math.ceil(result.domain.y_max))
    xs = [p[0] for p in points] or [1]
    ys = [p[1] for p in points] or [1]
    return max(1, math.ceil(max(xs))), max(1, math.ceil(max(ys)))


def handle_fit(args):
    """Handle the fit command."""
    configure_tracer(
        enabled=args.trace,
        level=args.trace_level,
        file_path=args.trace_file,
        json_output=args.trace_json,
    )
    
    tracer = get_tracer()
    
    try:
        points, domain, overrides = load_stroke(args.input)
        settings = load_config(args.config)
        
        with tracer.span("cli_fit", module="cli"):
            result = approximate(args.type, points, domain=domain, overrides=overrides,
                                 settings=settings)
        
        print(json.dumps(to_jsonable(result), indent=2))
        
        if args.out:
            save_result_json(result, args.out)
            width, height = _canvas_size(result, points)
            drawing = emit_results_svg([result], width, height,
                                      show_knots=settings.panel.show_knots_default)
            save_svg(drawing, os.path.join(args.out, "result.svg"))
        
        return 0 if result.success else 1
        
    except (OSError, ValueError, KeyError) as e:
        tracer.event(f"Fit failed: {str(e)}", level="ERROR")
        print(f"\nError: {str(e)}", file=sys.stderr)
        return 2


def handle_init_config(args):
    """Handle the init-config command."""
    save_default_config(args.out)
    print(f"Default configuration saved to: {args.out}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
