"""
Background maintenance for the memory subsystem.
"""

from .maintenance import MaintenanceJob, MaintenanceReport

__all__ = ["MaintenanceJob", "MaintenanceReport"]
