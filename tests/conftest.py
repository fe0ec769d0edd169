"""Pytest fixtures for strokefit tests."""

import tempfile

import numpy as np
import pytest


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def default_settings():
    """Create default fitter settings."""
    from strokefit.config import ApproximatorSettings
    return ApproximatorSettings()


@pytest.fixture
def line_points():
    """Samples on y = 2x + 1 for x in [0, 10]."""
    xs = np.linspace(0, 10, 21)
    return np.column_stack([xs, 2 * xs + 1])


@pytest.fixture
def circle_points():
    """24 samples exactly on a radius-5 circle centered at the origin."""
    t = np.linspace(0, 2 * np.pi, 24, endpoint=False)
    return np.column_stack([5 * np.cos(t), 5 * np.sin(t)])


@pytest.fixture
def ellipse_points():
    """60 samples on an axis-aligned ellipse with radii 10 and 5."""
    t = np.linspace(0, 2 * np.pi, 60, endpoint=False)
    return np.column_stack([20 + 10 * np.cos(t), 15 + 5 * np.sin(t)])


@pytest.fixture
def parabola_points():
    """An open U-shaped stroke, y = 0.1 (x - 5)^2 for x in [0, 10]."""
    xs = np.linspace(0, 10, 50)
    return np.column_stack([xs, 0.1 * (xs - 5) ** 2])


@pytest.fixture
def sine_points():
    """A strictly x-increasing wave."""
    xs = np.linspace(0, 2 * np.pi, 100)
    return np.column_stack([xs, np.sin(xs)])


@pytest.fixture
def l_shape_points():
    """A right angle: along the x axis, then straight up."""
    first = [[float(x), 0.0] for x in range(11)]
    second = [[10.0, float(y)] for y in range(1, 11)]
    return np.array(first + second)


@pytest.fixture
def line_arc_points():
    """An exact line from (0, 0) to (1, 0) turning sharply into a quarter arc around (2, 0)."""
    line = [[0.1 * i, 0.0] for i in range(11)]
    angles = np.pi - np.arange(1, 11) * (np.pi / 20)
    arc = np.column_stack([2 + np.cos(angles), np.sin(angles)])
    return np.vstack([np.array(line), arc])
