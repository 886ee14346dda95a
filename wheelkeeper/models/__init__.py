"""
Unified data model exports for wheelkeeper.

This module re-exports the requirement data models to provide a stable and
convenient public API. Users can import models directly from
``wheelkeeper.models`` instead of individual submodules.

Example:
    >>> from wheelkeeper.models import Requirement, RequirementsTxt
"""

from __future__ import annotations

from wheelkeeper.models.requirement import (
    Requirement,
    RequirementEntry,
    RequirementsTxt,
)

__all__ = [
    "Requirement",
    "RequirementEntry",
    "RequirementsTxt",
]
