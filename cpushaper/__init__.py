"""Duty-cycle CPU shaping workers and P95 CPU utilisation metric queries."""

__version__ = "0.1.0"
__all__ = ["oci", "shape"]