"""Exception hierarchy for the aggregation engine and its collaborators."""
from __future__ import annotations


class DowStatsError(Exception):
    """Base class for every error raised by dowstats."""


class StoreUnavailable(DowStatsError):
    """The aggregate store could not be reached or the driver failed."""


class ConflictError(DowStatsError):
    """An aggregate for the (point, weekday) pair already exists."""

    def __init__(self, point_id: int, weekday: int):
        super().__init__(f"aggregate already exists for point={point_id} weekday={weekday}")
        self.point_id = point_id
        self.weekday = weekday


class NotFoundError(DowStatsError):
    """The aggregate being saved no longer exists."""

    def __init__(self, aggregate_id: int):
        super().__init__(f"aggregate {aggregate_id} not found")
        self.aggregate_id = aggregate_id


class UpstreamUnavailable(DowStatsError):
    """The remote point service could not be reached or answered with an error."""


class InvalidBatch(DowStatsError):
    """A metric batch was rejected at the boundary."""


class DispatchError(DowStatsError):
    """One or more (point, weekday) merges failed during a dispatch."""

    def __init__(self, failed: int, total: int):
        super().__init__(f"{failed} of {total} aggregate merges failed")
        self.failed = failed
        self.total = total
        # DispatchResult of the run, attached by the dispatcher
        self.result = None


class MergeCancelled(DowStatsError):
    """A merge was abandoned before save because its cancel event fired."""


class PluginConfigError(DowStatsError):
    """The host registry is missing a handle the plugin requires."""


__all__ = [
    "DowStatsError",
    "StoreUnavailable",
    "ConflictError",
    "NotFoundError",
    "UpstreamUnavailable",
    "InvalidBatch",
    "DispatchError",
    "MergeCancelled",
    "PluginConfigError",
]
