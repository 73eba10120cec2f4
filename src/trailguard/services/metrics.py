# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

"""Prometheus metrics of the monitor, the price feed and the dispatcher."""

from logging import getLogger
from typing import Self

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

LOG = getLogger(__name__)


class MonitorMetrics:
    """
    Holds all metrics in a registry of its own, so that multiple instances
    (e.g. in tests) do not collide in the global registry.
    """

    def __init__(self: Self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()

        self.ticks = Counter(
            "trailguard_ticks_total",
            "Monitor ticks by outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.tick_duration = Histogram(
            "trailguard_tick_duration_seconds",
            "Duration of a monitor tick",
            registry=self.registry,
        )
        self.skipped_assets = Counter(
            "trailguard_skipped_assets_total",
            "Assets whose orders were not evaluated in a tick",
            ["reason"],
            registry=self.registry,
        )
        self.stale_versions = Counter(
            "trailguard_stale_version_total",
            "Writes that lost the optimistic lock",
            ["operation"],
            registry=self.registry,
        )
        self.order_errors = Counter(
            "trailguard_order_errors_total",
            "Unexpected errors while processing a single order",
            registry=self.registry,
        )
        self.triggers = Counter(
            "trailguard_triggers_total",
            "Triggered orders by reason",
            ["reason"],
            registry=self.registry,
        )
        self.settlements = Counter(
            "trailguard_settlements_total",
            "Settlement attempts by outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.price_fetches = Counter(
            "trailguard_price_fetch_total",
            "Upstream price requests by source and outcome",
            ["source", "outcome"],
            registry=self.registry,
        )
        self.active_orders = Gauge(
            "trailguard_active_orders",
            "Active orders seen in the last tick",
            registry=self.registry,
        )

    def value(self: Self, name: str, labels: dict[str, str] | None = None) -> float:
        """Returns the current value of a sample, 0 if it was never recorded"""
        return self.registry.get_sample_value(name, labels or {}) or 0.0

    def serve(self: Self, port: int) -> None:
        """Expose the metrics via HTTP"""
        LOG.info("Serving metrics on port %d", port)
        start_http_server(port, registry=self.registry)
