"""
Number formatting for equations and SVG paths.

Fixed decimals with trailing zeros trimmed; zero is always rendered as
"0", never "-0" or "+0".
"""

import math

DEFAULT_DECIMALS = 3


def trim_trailing_zeros(text):
    """Strip trailing zeros after the decimal point ("1.500" -> "1.5")."""
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in ("-0", "+0", ""):
        return "0"
    return text


def format_fixed(value, decimals=DEFAULT_DECIMALS):
    """Format a number with at most ``decimals`` places."""
    if value is None:
        return ""
    value = float(value)
    if not math.isfinite(value):
        return str(value)
    return trim_trailing_zeros(f"{value:.{decimals}f}")


def format_signed(value, decimals=DEFAULT_DECIMALS):
    """Format with an explicit sign: "+1.5", "-2", "+0"."""
    value = float(value)
    text = format_fixed(abs(value), decimals)
    if text == "0":
        return "+0"
    return f"+{text}" if value >= 0 else f"-{text}"


def format_point(point, decimals=DEFAULT_DECIMALS):
    """Format a point as "(x, y)"."""
    return f"({format_fixed(point[0], decimals)}, {format_fixed(point[1], decimals)})"


def format_term(coeff, suffix, decimals=DEFAULT_DECIMALS):
    """
    Format ``coeff * suffix`` as a signed term (" + 2x", " - x").
    
    Returns "" when the coefficient rounds to zero.
    """
    magnitude = format_fixed(abs(coeff), decimals)
    if magnitude == "0":
        return ""
    sign = " + " if coeff >= 0 else " - "
    if magnitude == "1" and suffix:
        return f"{sign}{suffix}"
    return f"{sign}{magnitude}{suffix}"
