"""
Celery Tasks Module.

Sub-modules:
- tax_tasks: Background rebuilds of VAT and WHT period summaries
"""
from __future__ import annotations

from .tax_tasks import (
    rebuild_year,
    recompute_period,
)

__all__ = [
    "recompute_period",
    "rebuild_year",
]
