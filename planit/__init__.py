"""PlanIt Places: cached, paginated nearby-place search."""

__version__ = "0.1.0"
