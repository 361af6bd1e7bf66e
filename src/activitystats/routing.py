"""Decides which log store answers a statistics category."""

from enum import Enum

from activitystats.categories import Dimension, StatisticsType


class Source(Enum):
    CONNECTION_LOG = "connection_log"
    RESOLUTION_LOG = "resolution_log"


def route(
    category: StatisticsType,
    name_resolution_only: bool,
    bypass_signal: bool | None = None,
) -> Source:
    """Pick the store for a category.

    Apps, IPs and countries only exist in the connection log. Domains come
    from the resolution log in dns-only mode. Otherwise contacted domains
    come from the connection log, while blocked domains stay on the
    resolution log unless some app bypasses resolution, in which case its
    blocks are only visible in the connection log. An unknown bypass signal
    counts as no bypass.
    """
    if category.dimension is not Dimension.DOMAINS:
        return Source.CONNECTION_LOG
    if name_resolution_only:
        return Source.RESOLUTION_LOG
    if category is StatisticsType.MOST_CONTACTED_DOMAINS:
        return Source.CONNECTION_LOG
    if bypass_signal:
        return Source.CONNECTION_LOG
    return Source.RESOLUTION_LOG
