# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

"""Unit tests for the price feed aggregator."""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Event
from unittest.mock import Mock

import pytest

from trailguard.exceptions import PriceUnavailableError
from trailguard.interfaces import IPriceSource
from trailguard.models.configuration import PriceFeedConfigDTO
from trailguard.models.price import FALLBACK_SOURCE
from trailguard.services.metrics import MonitorMetrics
from trailguard.services.price_feed import PriceFeedAggregator

from ..helper import FakeClock


def make_source(name: str, *results: object) -> Mock:
    """Source returning (or raising) the given results in order"""
    source = Mock(spec=IPriceSource)
    source.name = name
    source.fetch.side_effect = list(results)
    return source


@pytest.fixture
def config() -> PriceFeedConfigDTO:
    return PriceFeedConfigDTO(cache_ttl=30, stale_ceiling=600, request_timeout=2)


def make_feed(
    config: PriceFeedConfigDTO,
    clock: FakeClock,
    **sources: Mock,
) -> tuple[PriceFeedAggregator, MonitorMetrics]:
    metrics = MonitorMetrics()
    return (
        PriceFeedAggregator(config=config, sources=sources, metrics=metrics, clock=clock),
        metrics,
    )


class TestSourceFallback:
    def test_first_source_wins(self, config: PriceFeedConfigDTO, clock: FakeClock) -> None:
        first = make_source("coingecko", Decimal("0.25"))
        second = make_source("cryptocompare", Decimal("0.26"))
        feed, metrics = make_feed(config, clock, coingecko=first, cryptocompare=second)

        sample = feed.get_price("0")

        assert sample.price == Decimal("0.25")
        assert sample.source_name == "coingecko"
        assert sample.observed_at == clock.now
        second.fetch.assert_not_called()
        asset, timeout = first.fetch.call_args.args[0], first.fetch.call_args.kwargs["timeout"]
        assert asset.symbol == "ALGO"
        assert timeout == 2
        assert (
            metrics.value(
                "trailguard_price_fetch_total",
                {"source": "coingecko", "outcome": "success"},
            )
            == 1
        )

    def test_failing_and_invalid_sources_are_skipped(
        self,
        config: PriceFeedConfigDTO,
        clock: FakeClock,
    ) -> None:
        feed, metrics = make_feed(
            config,
            clock,
            coingecko=make_source("coingecko", TimeoutError("slow")),
            cryptocompare=make_source("cryptocompare", Decimal(0)),
            binance=make_source("binance", Decimal("0.2501")),
        )

        sample = feed.get_price("0")

        assert sample.source_name == "binance"
        assert sample.price == Decimal("0.2501")
        assert (
            metrics.value(
                "trailguard_price_fetch_total",
                {"source": "coingecko", "outcome": "error"},
            )
            == 1
        )
        assert (
            metrics.value(
                "trailguard_price_fetch_total",
                {"source": "cryptocompare", "outcome": "invalid"},
            )
            == 1
        )

    def test_non_finite_price_is_rejected(
        self,
        config: PriceFeedConfigDTO,
        clock: FakeClock,
    ) -> None:
        feed, _ = make_feed(
            config,
            clock,
            coingecko=make_source("coingecko", Decimal("NaN")),
            cryptocompare=make_source("cryptocompare", Decimal("Infinity")),
            binance=make_source("binance", Decimal("-1")),
        )
        with pytest.raises(PriceUnavailableError):
            feed.get_price("0")

    def test_unknown_asset(self, config: PriceFeedConfigDTO, clock: FakeClock) -> None:
        feed, _ = make_feed(config, clock)
        with pytest.raises(PriceUnavailableError, match="not registered"):
            feed.get_price("unknown")


class TestCache:
    def test_fresh_sample_is_reused(
        self,
        config: PriceFeedConfigDTO,
        clock: FakeClock,
    ) -> None:
        source = make_source("coingecko", Decimal("0.25"), Decimal("0.30"))
        feed, _ = make_feed(config, clock, coingecko=source)

        first = feed.get_price("0")
        clock.advance(29)
        assert feed.get_price("0") == first
        assert source.fetch.call_count == 1

        clock.advance(2)
        assert feed.get_price("0").price == Decimal("0.30")
        assert source.fetch.call_count == 2

    def test_stale_sample_used_when_all_sources_fail(
        self,
        config: PriceFeedConfigDTO,
        clock: FakeClock,
    ) -> None:
        source = make_source("coingecko", Decimal("0.25"), ConnectionError("down"))
        feed, _ = make_feed(config, clock, coingecko=source)
        first = feed.get_price("0")

        clock.advance(300)
        stale = feed.get_price("0")

        assert stale == first
        # the original observation time tells the caller how old it is
        assert stale.age(clock.now) == 300

    def test_too_old_sample_is_not_used(
        self,
        config: PriceFeedConfigDTO,
        clock: FakeClock,
    ) -> None:
        source = make_source("coingecko", Decimal("0.25"), ConnectionError("down"))
        feed, _ = make_feed(config, clock, coingecko=source)
        feed.get_price("0")

        clock.advance(601)
        with pytest.raises(PriceUnavailableError, match="all sources failed"):
            feed.get_price("0")

    def test_peek_does_not_fetch(self, config: PriceFeedConfigDTO, clock: FakeClock) -> None:
        source = make_source("coingecko", Decimal("0.25"))
        feed, _ = make_feed(config, clock, coingecko=source)
        assert feed.peek("0") is None
        feed.get_price("0")
        assert feed.peek("0").price == Decimal("0.25")
        assert source.fetch.call_count == 1

    def test_concurrent_callers_share_one_fetch(
        self,
        config: PriceFeedConfigDTO,
        clock: FakeClock,
    ) -> None:
        release = Event()

        def slow_fetch(*_: object, **__: object) -> Decimal:
            release.wait(timeout=5)
            return Decimal("0.25")

        source = Mock(spec=IPriceSource)
        source.fetch.side_effect = slow_fetch
        feed, _ = make_feed(config, clock, coingecko=source)

        with ThreadPoolExecutor(max_workers=4) as pool:
            futures = [pool.submit(feed.get_price, "0") for _ in range(4)]
            release.set()
            results = [future.result(timeout=5) for future in futures]

        assert source.fetch.call_count == 1
        assert all(result == results[0] for result in results)


class TestFallbackConstant:
    def test_fallback_price_is_tagged(self, clock: FakeClock) -> None:
        config = PriceFeedConfigDTO(fallback_prices={"0": Decimal("0.20")})
        feed, _ = make_feed(
            config,
            clock,
            coingecko=make_source("coingecko", ConnectionError("down")),
        )

        sample = feed.get_price("0")

        assert sample.price == Decimal("0.20")
        assert sample.source_name == FALLBACK_SOURCE
        assert sample.is_fallback
        # fallback samples are never cached
        assert feed.peek("0") is None

    def test_no_fallback_configured(
        self,
        config: PriceFeedConfigDTO,
        clock: FakeClock,
    ) -> None:
        feed, _ = make_feed(
            config,
            clock,
            coingecko=make_source("coingecko", ConnectionError("down")),
            cryptocompare=make_source("cryptocompare", ValueError("garbage")),
            binance=make_source("binance", KeyError("price")),
        )
        with pytest.raises(PriceUnavailableError) as exc_info:
            feed.get_price("0")
        assert exc_info.value.asset_id == "0"
