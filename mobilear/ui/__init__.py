"""Terminal progress display."""

from .progress import ProgressDisplay, create_composite_callback

__all__ = [
    "ProgressDisplay",
    "create_composite_callback",
]
