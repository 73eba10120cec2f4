# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

"""
Configuration models of the trailing stop engine. The values are passed via
CLI or environment variables.
"""

from decimal import Decimal
from typing import Self

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator


class EngineConfigDTO(BaseModel):
    """General configuration of the monitor engine"""

    name: str = "trailguard"
    interval: float = Field(10.0, ge=5, le=300, description="Tick interval in seconds")
    max_workers: int = Field(8, gt=0, description="Concurrent fetches per tick")
    max_price_age: float = Field(
        120.0,
        gt=0,
        description="Samples older than this (seconds) are not evaluated",
    )
    settlement_max_retries: int = Field(3, ge=0)
    settlement_backoff: float = Field(1.0, ge=0, description="Base delay in seconds")
    dry_run: bool = False
    settlement_url: str | None = None
    settlement_token: str | None = None
    metrics_port: int | None = Field(None, gt=0, lt=65536)

    @model_validator(mode="after")
    def validate_settlement(self: Self) -> Self:
        """Either settle for real via a gateway or run in dry-run mode"""
        if not self.dry_run and not self.settlement_url:
            raise ValueError("A settlement URL is required unless dry-run is enabled")
        return self


class DBConfigDTO(BaseModel):
    sqlite_file: str | None = None
    user: str | None = None
    password: str | None = None
    host: str | None = None
    port: int | None = None
    database: str = "trailguard"


class AssetDTO(BaseModel):
    """Registry entry of a tracked asset"""

    asset_id: str = Field(..., min_length=1)
    symbol: str = Field(..., min_length=1)
    name: str = ""
    asset_class: str = "crypto"
    # Identifier of the asset per price source, e.g. {"coingecko": "algorand"}
    source_ids: dict[str, str] = Field(default_factory=dict)


DEFAULT_ASSETS = [
    AssetDTO(
        asset_id="0",
        symbol="ALGO",
        name="Algorand",
        source_ids={
            "coingecko": "algorand",
            "cryptocompare": "ALGO",
            "binance": "ALGOUSDT",
        },
    ),
]


class PriceFeedConfigDTO(BaseModel):
    """Configuration of the price feed aggregator"""

    cache_ttl: float = Field(30.0, gt=0, description="Fresh cache window in seconds")
    stale_ceiling: float = Field(
        1800.0,
        gt=0,
        description="Max age of a cached sample used when all sources fail",
    )
    request_timeout: float = Field(5.0, gt=0, lt=10)
    sources: dict[str, list[str]] = Field(
        default_factory=lambda: {"crypto": ["coingecko", "cryptocompare", "binance"]},
    )
    fallback_prices: dict[str, Decimal] = Field(default_factory=dict)
    assets: list[AssetDTO] = Field(default_factory=lambda: list(DEFAULT_ASSETS))

    @model_validator(mode="after")
    def validate_windows(self: Self) -> Self:
        if self.stale_ceiling < self.cache_ttl:
            raise ValueError("The stale ceiling must not be shorter than the cache TTL")
        return self

    def get_asset(self: Self, asset_id: str) -> AssetDTO | None:
        for asset in self.assets:
            if asset.asset_id == asset_id:
                return asset
        return None


class TelegramConfigDTO(BaseModel):
    """Pydantic model for Telegram notification configuration."""

    token: str | None = None
    chat_id: str | None = None

    @field_validator("token")
    @classmethod
    def validate_token(cls, value: str | None) -> str | None:
        """Bot tokens look like '<bot id>:<secret>'"""
        if value and (":" not in value or len(value) < 20):
            raise ValueError("Invalid Telegram bot token format")
        return value

    @computed_field
    def enabled(self) -> bool:
        """Return True if both token and chat_id are truthy values."""
        return bool(self.token and self.chat_id)


class NotificationConfigDTO(BaseModel):
    """Pydantic model for notification service configuration."""

    telegram: TelegramConfigDTO = Field(default_factory=TelegramConfigDTO)
