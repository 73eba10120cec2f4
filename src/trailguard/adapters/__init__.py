# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

from trailguard.adapters.notification import TelegramNotificationChannelAdapter
from trailguard.adapters.price_sources import (
    BinancePriceSourceAdapter,
    CoinGeckoPriceSourceAdapter,
    CryptoComparePriceSourceAdapter,
    create_price_sources,
)
from trailguard.adapters.settlement import (
    DryRunSettlementClientAdapter,
    HTTPSettlementClientAdapter,
)

__all__ = [
    "BinancePriceSourceAdapter",
    "CoinGeckoPriceSourceAdapter",
    "CryptoComparePriceSourceAdapter",
    "DryRunSettlementClientAdapter",
    "HTTPSettlementClientAdapter",
    "TelegramNotificationChannelAdapter",
    "create_price_sources",
]
