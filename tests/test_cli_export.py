"""Tests for the CLI, SVG emission and artifact saving."""

import json
import os

import yaml

from strokefit.cli import load_stroke, main
from strokefit.dispatcher import approximate
from strokefit.export.svg_emit import emit_results_svg
from strokefit.io.save_artifacts import save_result_json, to_jsonable


def _write_stroke(temp_dir, data, name="stroke.json"):
    path = os.path.join(temp_dir, name)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f)
    return path


class TestCli:
    """Tests for the command-line interface."""
    
    def test_fit_writes_artifacts(self, temp_dir, line_points):
        """Test that fit prints a result and saves JSON and SVG."""
        path = _write_stroke(temp_dir, line_points.tolist())
        out_dir = os.path.join(temp_dir, "out")
        
        code = main(["fit", "--input", path, "--type", "linear", "--out", out_dir])
        
        assert code == 0
        with open(os.path.join(out_dir, "result.json"), "r", encoding="utf-8") as f:
            saved = json.load(f)
        assert saved["success"]
        assert saved["svgPath"] == "M 0 1 L 10 21"
        with open(os.path.join(out_dir, "result.svg"), "r", encoding="utf-8") as f:
            svg = f.read()
        assert "fit-0-linear" in svg
        assert 'id="knots"' in svg
    
    def test_failed_fit_exit_code(self, temp_dir, parabola_points):
        """Test that a rejected stroke exits with 1."""
        path = _write_stroke(temp_dir, {"points": parabola_points.tolist()})
        
        assert main(["fit", "--input", path, "--type", "linear"]) == 1
    
    def test_missing_input_exit_code(self, temp_dir):
        """Test that an unreadable input exits with 2."""
        missing = os.path.join(temp_dir, "missing.json")
        
        assert main(["fit", "--input", missing, "--type", "linear"]) == 2
    
    def test_stroke_object_with_overrides(self, temp_dir):
        """Test that domain and overrides are read from a stroke object."""
        path = _write_stroke(temp_dir, {
            "points": [[0, 0], [1, 1]],
            "domain": {"xMin": 0, "xMax": 10, "yMin": 0, "yMax": 10},
            "overrides": {"snap": True},
        })
        
        points, domain, overrides = load_stroke(path)
        
        assert points == [[0, 0], [1, 1]]
        assert domain.x_max == 10
        assert overrides == {"snap": True}
    
    def test_init_config(self, temp_dir):
        """Test that init-config writes loadable YAML."""
        path = os.path.join(temp_dir, "config.yaml")
        
        assert main(["init-config", "--out", path]) == 0
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        assert "selective" in data
        assert data["panel"]["max_knots"] == 5


class TestExport:
    """Tests for SVG emission and JSON saving."""
    
    def test_failed_results_skipped(self, line_points, parabola_points):
        """Test that only successful results are drawn."""
        good = approximate("linear", line_points)
        bad = approximate("linear", parabola_points)
        
        svg = emit_results_svg([good, bad], 30, 30).tostring()
        
        assert "fit-0-linear" in svg
        assert "fit-1-linear" not in svg
    
    def test_knot_markers(self, line_points):
        """Test that knots are drawn when requested."""
        result = approximate("linear", line_points)
        
        svg = emit_results_svg([result], 30, 30, show_knots=True).tostring()
        
        assert 'id="knots"' in svg
        assert svg.count("<circle") == len(result.knots)
    
    def test_result_json_camel_case(self, temp_dir, circle_points):
        """Test that saved results use camelCase keys."""
        result = approximate("singleCircle", circle_points)
        
        path = save_result_json(result, temp_dir)
        
        with open(path, "r", encoding="utf-8") as f:
            saved = json.load(f)
        assert saved == to_jsonable(result)
        assert "latexEquations" in saved
        assert saved["exportData"]["shape"] == "circle"
