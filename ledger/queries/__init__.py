"""Statistics query package."""

from ledger.queries.executor import StatisticsExecutor, month_bounds

__all__ = ["StatisticsExecutor", "month_bounds"]
