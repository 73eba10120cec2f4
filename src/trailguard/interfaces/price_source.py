# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Self

from trailguard.models.configuration import AssetDTO


class IPriceSource(ABC):
    """Interface for upstream price sources."""

    @property
    @abstractmethod
    def name(self: Self) -> str:
        """Name of the source, stored in the samples it produces."""

    @abstractmethod
    def fetch(self: Self, asset: AssetDTO, timeout: float) -> Decimal:
        """
        Return the current price of the asset.

        Implementations raise on network errors, unsupported assets and
        malformed responses. Validating the price is up to the caller.
        """
