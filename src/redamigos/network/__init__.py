"""Derived network views: trees, rankings and statistics."""

from redamigos.network.aggregator import NetworkAggregator, month_start_utc, network_aggregator

__all__ = ["NetworkAggregator", "month_start_utc", "network_aggregator"]
