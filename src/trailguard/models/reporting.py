# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

"""Read-only statistics derived from the order store"""

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel


class PlatformMetrics(BaseModel):
    total_active_orders: int
    total_protected_value: Decimal
    execution_success_rate: Decimal | None  # None until something settled
    average_trail_distance: Decimal | None  # percentage orders only
    total_executed_orders: int
    total_failed_orders: int


class BestOrder(BaseModel):
    order_id: str
    asset: str
    pnl_pct: Decimal


class UserStats(BaseModel):
    address: str
    active_orders: int
    total_orders_created: int
    successful_executions: int
    total_protected_value: Decimal
    average_hold_time: float | None  # hours
    best_performing_order: BestOrder | None
    risk_profile: Literal["conservative", "moderate", "aggressive"]
