"""Business services."""

from app.services.data_collector import DataCollector, estimate_total_batches, years_before

__all__ = [
    "DataCollector",
    "estimate_total_batches",
    "years_before",
]
