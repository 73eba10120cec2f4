# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

"""
Order models of the trailing stop engine.

The ``Order`` model is immutable, every change produces a new instance via
``model_copy``. Only the order store assigns ``version`` and ``updated_at``.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, model_validator


class OrderStatus(StrEnum):
    ACTIVE = "active"
    TRIGGERED = "triggered"
    EXECUTING = "executing"
    EXECUTED = "executed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class TrailDistanceType(StrEnum):
    PERCENTAGE = "percentage"
    ABSOLUTE = "absolute"


class OrderType(StrEnum):
    TRAILING = "trailing"
    BRACKET = "bracket"  # trailing stop plus take-profit


class TriggerReason(StrEnum):
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"


class Order(BaseModel):
    """Model of a trailing stop order as it is persisted"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Order ID")
    user_address: str = Field(..., min_length=1, description="Owner of the order")
    asset_id: str = Field(..., min_length=1, description="Tracked asset")
    asset_symbol: str = ""
    asset_name: str = ""
    order_type: OrderType = OrderType.TRAILING

    amount: Decimal = Field(..., gt=0, description="Quantity to dispose of")
    entry_price: Decimal = Field(..., gt=0, description="Price at creation")
    high_water_mark: Decimal = Field(..., gt=0)
    trail_distance: Decimal = Field(..., ge=0)
    trail_distance_type: TrailDistanceType
    stop_price: Decimal
    take_profit_price: Decimal | None = None

    status: OrderStatus = OrderStatus.ACTIVE
    current_price: Decimal = Field(..., gt=0)
    pnl: Decimal = Decimal(0)
    pnl_pct: Decimal = Decimal(0)
    trigger_reason: TriggerReason | None = None

    created_at: datetime
    updated_at: datetime

    execution_price: Decimal | None = None
    execution_time: datetime | None = None
    settlement_ref: str | None = None
    failure_reason: str | None = None
    execution_attempts: int = Field(0, ge=0)

    version: int = Field(0, ge=0)


class CreateOrderRequest(BaseModel):
    """Payload of the order creation API"""

    asset_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    trail_distance: Decimal = Field(..., ge=0)
    trail_distance_type: TrailDistanceType = TrailDistanceType.PERCENTAGE
    entry_price: Decimal | None = Field(None, gt=0)
    user_address: str = Field(..., min_length=1)
    take_profit_price: Decimal | None = Field(None, gt=0)

    @model_validator(mode="after")
    def validate_distance(self: Self) -> Self:
        """Ensure the initial stop price is strictly positive"""
        if (
            self.trail_distance_type == TrailDistanceType.PERCENTAGE
            and self.trail_distance >= 100
        ):
            raise ValueError(
                f"Percentage trail distance must be below 100, got {self.trail_distance}",
            )
        if (
            self.trail_distance_type == TrailDistanceType.ABSOLUTE
            and self.entry_price is not None
            and self.trail_distance >= self.entry_price
        ):
            raise ValueError(
                f"Absolute trail distance ({self.trail_distance}) must be below the"
                f" entry price ({self.entry_price})",
            )
        return self

    @model_validator(mode="after")
    def validate_take_profit(self: Self) -> Self:
        """A take-profit level below the entry price would trigger immediately"""
        if (
            self.take_profit_price is not None
            and self.entry_price is not None
            and self.take_profit_price <= self.entry_price
        ):
            raise ValueError(
                f"Take-profit price ({self.take_profit_price}) must be above the"
                f" entry price ({self.entry_price})",
            )
        return self
