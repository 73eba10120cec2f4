# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

"""Factories shared by the tests"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

from trailguard.core.trailing import compute_stop_price
from trailguard.models.order import Order, OrderType, TrailDistanceType
from trailguard.models.price import PriceSample

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)
USER = "ALGOUSER1"


class FakeClock:
    """Manually advanced clock"""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def build_order(**overrides: Any) -> Order:
    """Active percentage order as it is created, without store stamps"""
    entry = Decimal(overrides.pop("entry_price", "1.00"))
    distance = Decimal(overrides.pop("trail_distance", "10"))
    distance_type = overrides.pop("trail_distance_type", TrailDistanceType.PERCENTAGE)
    values: dict[str, Any] = {
        "id": "order-1",
        "user_address": USER,
        "asset_id": "0",
        "asset_symbol": "ALGO",
        "asset_name": "Algorand",
        "order_type": OrderType.TRAILING,
        "amount": Decimal(100),
        "entry_price": entry,
        "high_water_mark": entry,
        "trail_distance": distance,
        "trail_distance_type": distance_type,
        "stop_price": compute_stop_price(entry, distance, distance_type),
        "current_price": entry,
        "created_at": NOW,
        "updated_at": NOW,
    }
    values.update(overrides)
    return Order(**values)


def build_sample(
    price: str,
    asset_id: str = "0",
    observed_at: datetime = NOW,
    source_name: str = "coingecko",
) -> PriceSample:
    return PriceSample(
        asset_id=asset_id,
        price=Decimal(price),
        observed_at=observed_at,
        source_name=source_name,
    )
