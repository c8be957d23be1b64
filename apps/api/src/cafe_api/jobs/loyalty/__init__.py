"""Loyalty job exports."""

from .expiry import run_points_expiry_sweep  # noqa: F401

__all__ = ["run_points_expiry_sweep"]
