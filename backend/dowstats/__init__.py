"""Per-point, per-weekday running statistics over streamed metrics."""

__version__ = "1.0.0"
