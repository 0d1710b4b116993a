"""
Reference data snapshots (profiles, grants, cohort members).
"""

from .reference_data import ReferenceData, ReferenceDataLoader
from .snapshots import SnapshotExporter

__all__ = ["ReferenceData", "ReferenceDataLoader", "SnapshotExporter"]
