"""Synthetic diagram test harness.

Generate diagram images with printed part markers at known positions.

Usage:
    from tests.synthetic import standard_diagram, random_diagram, render_diagram

    image, truth = render_diagram(standard_diagram())
"""

from .data_gen import (
    SyntheticDiagram,
    SyntheticMarker,
    random_diagram,
    standard_diagram,
)
from .modifiers import (
    Frame,
    LineArt,
    Modifier,
    SaltNoise,
    UnevenIllumination,
)
from .renderer import render_diagram, stamp_text

__all__ = [
    # Generation
    "standard_diagram",
    "random_diagram",
    "render_diagram",
    "stamp_text",
    # Data types
    "SyntheticDiagram",
    "SyntheticMarker",
    # Modifiers
    "Modifier",
    "Frame",
    "LineArt",
    "SaltNoise",
    "UnevenIllumination",
]
