# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

"""Exceptions raised by the trailing stop engine."""

from typing import Self


class TrailGuardError(Exception):
    """Base exception of this package."""


class EngineStateError(TrailGuardError):
    """Exception raised when the engine cannot continue running."""


class PriceUnavailableError(TrailGuardError):
    """All price sources failed and no usable cached sample exists."""

    def __init__(self: Self, asset_id: str, reason: str = "") -> None:
        self.asset_id = asset_id
        super().__init__(
            f"No usable price for asset '{asset_id}'" + (f": {reason}" if reason else ""),
        )


class OrderStoreError(TrailGuardError):
    """Base exception for errors raised by the order store."""


class OrderNotFoundError(OrderStoreError):
    def __init__(self: Self, order_id: str) -> None:
        self.order_id = order_id
        super().__init__(f"Order '{order_id}' not found")


class StaleVersionError(OrderStoreError):
    """
    The record changed since it was read. The writer lost the optimistic lock
    and has to re-read the order before trying again.
    """

    def __init__(self: Self, order_id: str, expected_version: int) -> None:
        self.order_id = order_id
        self.expected_version = expected_version
        super().__init__(
            f"Order '{order_id}' is no longer at version {expected_version}",
        )


class ConflictingStateError(TrailGuardError):
    """The requested action is not allowed in the order's current state."""

    def __init__(
        self: Self,
        order_id: str,
        current: str,
        requested: str,
    ) -> None:
        self.order_id = order_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Order '{order_id}' is '{current}', cannot apply '{requested}'",
        )


class IllegalTransitionError(ConflictingStateError):
    """The transition is not part of the order state machine at all."""


class SettlementError(TrailGuardError):
    """Base exception for settlement client failures."""


class SettlementTransientError(SettlementError):
    """Network problems, timeouts and other failures worth retrying."""


class SettlementTerminalError(SettlementError):
    """Rejections that will not succeed on retry, e.g. insufficient funds."""
