"""Grouped and basic restore flows."""

from .basic import BasicRestore
from .grouped import RestoreCandidate, RestoreGroup, RestoreGrouper

__all__ = ["BasicRestore", "RestoreCandidate", "RestoreGroup", "RestoreGrouper"]
