"""
Artifact saving utilities.

Handles writing fit results as JSON and SVG documents to disk.
"""

import json
import os

from strokefit.tracer import get_tracer


def ensure_dir(path):
    """Create directory if it does not exist."""
    if path:
        os.makedirs(path, exist_ok=True)


def to_jsonable(data):
    """Plain JSON data for a pydantic model (camelCase keys) or a list of them."""
    if hasattr(data, "model_dump"):
        return data.model_dump(by_alias=True, mode="json")
    if isinstance(data, (list, tuple)):
        return [to_jsonable(item) for item in data]
    return data


def save_json(data, path, indent=2):
    """
    Save a dictionary or Pydantic model to JSON.
    """
    tracer = get_tracer()
    
    ensure_dir(os.path.dirname(path))
    
    with open(path, "w", encoding="utf-8") as f:
        json.dump(to_jsonable(data), f, indent=indent, default=str)
    
    tracer.event(f"Saved JSON: {path}")


def save_result_json(result, out_dir, filename="result.json"):
    """Save one FitResult under out_dir; returns the written path."""
    path = os.path.join(out_dir, filename)
    save_json(result, path)
    return path


def save_svg(svg_content, path):
    """
    Save SVG content to file.
    """
    tracer = get_tracer()
    
    ensure_dir(os.path.dirname(path))
    
    if hasattr(svg_content, "tostring"):
        content = svg_content.tostring()
    else:
        content = str(svg_content)
    
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    
    tracer.event(f"Saved SVG: {path}")
