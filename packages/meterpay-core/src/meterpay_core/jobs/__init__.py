"""Scheduled maintenance jobs."""
from .expiry_sweep import SweepReport, sweep_expired

__all__ = ["SweepReport", "sweep_expired"]
