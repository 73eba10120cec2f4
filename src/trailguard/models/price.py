# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

from datetime import datetime
from decimal import Decimal
from typing import Self

from pydantic import BaseModel, ConfigDict, Field

FALLBACK_SOURCE = "fallback"


class PriceSample(BaseModel):
    """A single price observation of an asset"""

    model_config = ConfigDict(frozen=True)

    asset_id: str = Field(..., min_length=1)
    price: Decimal = Field(..., gt=0, description="Observed price")
    observed_at: datetime
    source_name: str = Field(..., min_length=1, description="Name of the price source")

    @property
    def is_fallback(self: Self) -> bool:
        """True if the price is a configured constant and not market data"""
        return self.source_name == FALLBACK_SOURCE

    def age(self: Self, now: datetime) -> float:
        """Age of the sample in seconds"""
        return (now - self.observed_at).total_seconds()
