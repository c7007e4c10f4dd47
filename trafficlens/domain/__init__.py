from .analytics.dtos import Metrics
from .analytics.dtos import TopEntries
from .analytics.dtos import TrafficReport

__all__ = [
    "Metrics",
    "TopEntries",
    "TrafficReport",
]
