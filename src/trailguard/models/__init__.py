# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

from trailguard.models.configuration import (
    AssetDTO,
    DBConfigDTO,
    EngineConfigDTO,
    NotificationConfigDTO,
    PriceFeedConfigDTO,
    TelegramConfigDTO,
)
from trailguard.models.order import (
    CreateOrderRequest,
    Order,
    OrderStatus,
    OrderType,
    TrailDistanceType,
    TriggerReason,
)
from trailguard.models.price import FALLBACK_SOURCE, PriceSample

__all__ = [
    "FALLBACK_SOURCE",
    "AssetDTO",
    "CreateOrderRequest",
    "DBConfigDTO",
    "EngineConfigDTO",
    "NotificationConfigDTO",
    "Order",
    "OrderStatus",
    "OrderType",
    "PriceFeedConfigDTO",
    "PriceSample",
    "TelegramConfigDTO",
    "TrailDistanceType",
    "TriggerReason",
]
