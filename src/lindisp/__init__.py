"""Lindisp: linear dispersion solver for gyrotropic momentum distributions."""

__version__ = "0.1.0"
