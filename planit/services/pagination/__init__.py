"""Pagination controller: per-category page state for the active location."""

from .service import (
    LoadSummary,
    PagePhase,
    PageResult,
    PaginationController,
    PaginationState,
)

__all__ = [
    "LoadSummary",
    "PagePhase",
    "PageResult",
    "PaginationController",
    "PaginationState",
]
