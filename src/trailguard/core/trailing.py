# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

"""
Trailing stop evaluation.

Pure functions only: no I/O, no clock access. The same inputs always produce
the same outputs, which is what makes re-evaluating an order after a lost
optimistic lock safe.
"""

from decimal import Decimal
from typing import NamedTuple

from trailguard.models.order import Order, TrailDistanceType, TriggerReason
from trailguard.models.price import PriceSample

HUNDRED = Decimal(100)

# Fields of an order that evaluate() may change
EVALUATED_FIELDS = (
    "current_price",
    "high_water_mark",
    "stop_price",
    "pnl",
    "pnl_pct",
    "trigger_reason",
)


class Evaluation(NamedTuple):
    order: Order
    trigger: bool
    reason: TriggerReason | None


def compute_stop_price(
    high_water_mark: Decimal,
    trail_distance: Decimal,
    trail_distance_type: TrailDistanceType,
) -> Decimal:
    """
    Returns the stop price that keeps ``trail_distance`` below the high-water
    mark, either as percentage of the mark or as absolute price offset.
    """
    if trail_distance_type == TrailDistanceType.PERCENTAGE:
        return high_water_mark * (1 - trail_distance / HUNDRED)
    return high_water_mark - trail_distance


def compute_pnl(
    price: Decimal,
    entry_price: Decimal,
    amount: Decimal,
) -> tuple[Decimal, Decimal]:
    """Returns the absolute and the percentage PnL at ``price``"""
    return (
        (price - entry_price) * amount,
        (price - entry_price) / entry_price * HUNDRED,
    )


def evaluate(order: Order, sample: PriceSample) -> Evaluation:
    """
    Apply a fresh price sample to an order.

    1. The high-water mark only ratchets up.
    2. The stop price is recomputed from the mark but never moves down, also
       not while the price is falling.
    3. The stop-loss check comes first, the take-profit check second, so at
       most one reason fires. The stop boundary is inclusive.

    The returned order keeps its status; moving it to ``triggered`` is up to
    the caller.
    """
    if sample.asset_id != order.asset_id:
        raise ValueError(
            f"Sample of asset '{sample.asset_id}' does not belong to order"
            f" '{order.id}' on asset '{order.asset_id}'",
        )

    price = sample.price
    high_water_mark = max(order.high_water_mark, price)
    stop_price = max(
        order.stop_price,
        compute_stop_price(
            high_water_mark,
            order.trail_distance,
            order.trail_distance_type,
        ),
    )

    reason: TriggerReason | None = None
    if price <= stop_price:
        reason = TriggerReason.STOP_LOSS
    elif order.take_profit_price is not None and price >= order.take_profit_price:
        reason = TriggerReason.TAKE_PROFIT

    pnl, pnl_pct = compute_pnl(price, order.entry_price, order.amount)

    updated = order.model_copy(
        update={
            "current_price": price,
            "high_water_mark": high_water_mark,
            "stop_price": stop_price,
            "pnl": pnl,
            "pnl_pct": pnl_pct,
            "trigger_reason": reason if reason is not None else order.trigger_reason,
        },
    )
    return Evaluation(order=updated, trigger=reason is not None, reason=reason)
