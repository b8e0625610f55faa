"""Kernel ORM models."""

from credit_kernel.models.decision import DecisionModel

__all__ = ["DecisionModel"]
