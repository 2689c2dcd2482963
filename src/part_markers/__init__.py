"""Part-marker recognition for technical diagram images."""

__version__ = "0.1.0"
