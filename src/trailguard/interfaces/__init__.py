# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

from trailguard.interfaces.notification import INotificationChannel
from trailguard.interfaces.price_source import IPriceSource
from trailguard.interfaces.settlement import ISettlementClient

__all__ = ["INotificationChannel", "IPriceSource", "ISettlementClient"]
