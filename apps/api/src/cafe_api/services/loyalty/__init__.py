"""Loyalty service exports."""

from .accountant import PointsAccountant, PointsSnapshot  # noqa: F401

__all__ = ["PointsAccountant", "PointsSnapshot"]
