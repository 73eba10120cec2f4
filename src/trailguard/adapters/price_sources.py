# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

"""HTTP price sources queried by the price feed aggregator."""

from abc import abstractmethod
from decimal import Decimal
from logging import getLogger
from typing import Any, Self

import requests

from trailguard.interfaces import IPriceSource
from trailguard.models.configuration import AssetDTO

LOG = getLogger(__name__)


class HTTPPriceSourceBase(IPriceSource):
    """Shared request handling of the JSON price APIs."""

    NAME: str = ""
    URL: str = ""

    @property
    def name(self: Self) -> str:
        return self.NAME

    def fetch(self: Self, asset: AssetDTO, timeout: float) -> Decimal:
        if not (identifier := asset.source_ids.get(self.NAME)):
            raise LookupError(f"{self.NAME} has no identifier for '{asset.symbol}'")

        response = requests.get(
            self.URL,
            params=self._params(identifier),
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
        response.raise_for_status()
        raw = self._extract(response.json(), identifier)
        LOG.debug("%s price for %s: %s", self.NAME, asset.symbol, raw)
        # str() first, floats would carry their binary representation over
        return Decimal(str(raw))

    @abstractmethod
    def _params(self: Self, identifier: str) -> dict[str, str]: ...

    @abstractmethod
    def _extract(self: Self, data: Any, identifier: str) -> Any: ...  # noqa: ANN401


class CoinGeckoPriceSourceAdapter(HTTPPriceSourceBase):
    NAME = "coingecko"
    URL = "https://api.coingecko.com/api/v3/simple/price"

    def _params(self: Self, identifier: str) -> dict[str, str]:
        return {"ids": identifier, "vs_currencies": "usd"}

    def _extract(self: Self, data: Any, identifier: str) -> Any:  # noqa: ANN401
        return data[identifier]["usd"]


class CryptoComparePriceSourceAdapter(HTTPPriceSourceBase):
    NAME = "cryptocompare"
    URL = "https://min-api.cryptocompare.com/data/price"

    def _params(self: Self, identifier: str) -> dict[str, str]:
        return {"fsym": identifier, "tsyms": "USD"}

    def _extract(self: Self, data: Any, identifier: str) -> Any:  # noqa: ANN401
        return data["USD"]


class BinancePriceSourceAdapter(HTTPPriceSourceBase):
    NAME = "binance"
    URL = "https://api.binance.com/api/v3/ticker/price"

    def _params(self: Self, identifier: str) -> dict[str, str]:
        return {"symbol": identifier}

    def _extract(self: Self, data: Any, identifier: str) -> Any:  # noqa: ANN401
        return data["price"]


PRICE_SOURCES: dict[str, type[HTTPPriceSourceBase]] = {
    source.NAME: source
    for source in (
        CoinGeckoPriceSourceAdapter,
        CryptoComparePriceSourceAdapter,
        BinancePriceSourceAdapter,
    )
}


def create_price_sources(names: set[str]) -> dict[str, IPriceSource]:
    """Instantiate the named sources"""
    if unknown := names - PRICE_SOURCES.keys():
        raise ValueError(f"Unknown price sources: {', '.join(sorted(unknown))}")
    return {name: PRICE_SOURCES[name]() for name in names}
