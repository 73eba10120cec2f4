# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

"""
Price feed aggregator

Asks the configured sources of an asset in order until one returns a
strictly positive price. Fresh samples are cached for ``cache_ttl`` seconds.
If every source fails, a cached sample younger than ``stale_ceiling`` is
returned as is (with its original observation time), then a configured
fallback constant tagged as such, and finally PriceUnavailableError.

The methods are blocking and are meant to be run in worker threads.
"""

from datetime import datetime
from decimal import Decimal
from logging import getLogger
from threading import Lock
from typing import Callable, Self

from trailguard.core.clock import utc_now
from trailguard.exceptions import PriceUnavailableError
from trailguard.interfaces import IPriceSource
from trailguard.models.configuration import AssetDTO, PriceFeedConfigDTO
from trailguard.models.price import FALLBACK_SOURCE, PriceSample
from trailguard.services.metrics import MonitorMetrics

LOG = getLogger(__name__)


class PriceFeedAggregator:
    def __init__(
        self: Self,
        config: PriceFeedConfigDTO,
        sources: dict[str, IPriceSource],
        metrics: MonitorMetrics | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.__config = config
        self.__sources = sources
        self.__metrics = metrics or MonitorMetrics()
        self.__clock = clock
        self.__cache: dict[str, PriceSample] = {}
        self.__cache_lock = Lock()
        self.__fetch_locks: dict[str, Lock] = {}

    def get_asset(self: Self, asset_id: str) -> AssetDTO | None:
        return self.__config.get_asset(asset_id)

    def peek(self: Self, asset_id: str) -> PriceSample | None:
        """Returns the last cached sample without contacting any source"""
        with self.__cache_lock:
            return self.__cache.get(asset_id)

    def get_price(self: Self, asset_id: str) -> PriceSample:
        """
        Returns a price sample of the asset.

        Only one caller per asset queries the upstream sources, concurrent
        callers wait for it and receive the sample it cached.
        """
        if sample := self.__fresh(asset_id):
            return sample

        with self.__fetch_lock(asset_id):
            if sample := self.__fresh(asset_id):
                return sample
            try:
                sample = self.__fetch(asset_id)
            except PriceUnavailableError as exc:
                return self.__last_resort(asset_id, exc)

            with self.__cache_lock:
                self.__cache[asset_id] = sample
            return sample

    def __fetch_lock(self: Self, asset_id: str) -> Lock:
        with self.__cache_lock:
            if asset_id not in self.__fetch_locks:
                self.__fetch_locks[asset_id] = Lock()
            return self.__fetch_locks[asset_id]

    def __fresh(self: Self, asset_id: str) -> PriceSample | None:
        sample = self.peek(asset_id)
        if sample and sample.age(self.__clock()) <= self.__config.cache_ttl:
            return sample
        return None

    def __fetch(self: Self, asset_id: str) -> PriceSample:
        if not (asset := self.__config.get_asset(asset_id)):
            raise PriceUnavailableError(asset_id, "asset is not registered")

        source_names = self.__config.sources.get(asset.asset_class, [])
        for name in source_names:
            if not (source := self.__sources.get(name)):
                LOG.warning("Price source '%s' is not available, skipping.", name)
                continue
            try:
                price = source.fetch(asset, timeout=self.__config.request_timeout)
            except Exception as exc:  # noqa: BLE001 # pylint: disable=broad-exception-caught
                LOG.warning(
                    "Price source '%s' failed for %s: %s",
                    name,
                    asset.symbol,
                    exc,
                )
                self.__metrics.price_fetches.labels(source=name, outcome="error").inc()
                continue

            if not price.is_finite() or price <= 0:
                LOG.warning(
                    "Price source '%s' returned an invalid price for %s: %s",
                    name,
                    asset.symbol,
                    price,
                )
                self.__metrics.price_fetches.labels(source=name, outcome="invalid").inc()
                continue

            self.__metrics.price_fetches.labels(source=name, outcome="success").inc()
            LOG.debug("Price of %s from %s: %s", asset.symbol, name, price)
            return PriceSample(
                asset_id=asset_id,
                price=price,
                observed_at=self.__clock(),
                source_name=name,
            )

        raise PriceUnavailableError(
            asset_id,
            f"all sources failed ({', '.join(source_names) or 'none configured'})",
        )

    def __last_resort(
        self: Self,
        asset_id: str,
        exc: PriceUnavailableError,
    ) -> PriceSample:
        now = self.__clock()
        cached = self.peek(asset_id)
        if cached and cached.age(now) <= self.__config.stale_ceiling:
            LOG.warning(
                "Using cached price of asset '%s' observed %.0f seconds ago.",
                asset_id,
                cached.age(now),
            )
            return cached

        if (fallback := self.__config.fallback_prices.get(asset_id)) is not None:
            LOG.warning(
                "Using the configured fallback price %s for asset '%s'.",
                fallback,
                asset_id,
            )
            return PriceSample(
                asset_id=asset_id,
                price=Decimal(fallback),
                observed_at=now,
                source_name=FALLBACK_SOURCE,
            )
        raise exc
