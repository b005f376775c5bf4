"""
Mobile AR core

Marker and calibration-pattern tracking with visual-inertial fusion,
panoramic HDR environment building from bracketed exposures and
light probe sampling of the resulting panoramas.
"""

__version__ = "0.1.0"
