# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

import asyncio
from logging import getLogger
from typing import Self

from trailguard.core.event_bus import Event
from trailguard.interfaces import INotificationChannel
from trailguard.models.configuration import NotificationConfigDTO
from trailguard.models.order import Order

LOG = getLogger(__name__)

TITLES = {
    "created": "🛡️ Trailing stop created",
    "triggered": "⚡ Trailing stop triggered",
    "executed": "✅ Order executed",
    "failed": "❌ Order execution failed",
    "cancelled": "🚫 Order cancelled",
    "in_flight": "⚠️ Order in flight since restart",
}


def format_order_message(kind: str, order: Order) -> str:
    """Short markdown message describing an order event"""
    asset = order.asset_symbol or order.asset_id
    lines = [
        f"*{TITLES.get(kind, kind)}*",
        f"Order: `{order.id}`",
        f"Asset: {asset}, amount {order.amount}",
    ]
    if kind == "created":
        lines.append(f"Entry: {order.entry_price}, stop: {order.stop_price}")
        if order.take_profit_price is not None:
            lines.append(f"Take profit: {order.take_profit_price}")
    elif kind == "triggered":
        lines.append(
            f"Price: {order.current_price} ({order.trigger_reason or 'unknown'})",
        )
        lines.append(f"Stop: {order.stop_price}, high: {order.high_water_mark}")
    elif kind == "executed":
        lines.append(f"Execution price: {order.execution_price}")
        lines.append(f"Reference: `{order.settlement_ref}`")
        lines.append(f"PnL: {order.pnl} ({order.pnl_pct:.2f}%)")
    elif kind == "failed":
        lines.append(f"Reason: {order.failure_reason}")
    elif kind == "in_flight":
        lines.append("The settlement outcome is unknown, resolve it manually.")
    return "\n".join(lines)


class NotificationService:
    """Service for sending notifications through configured channels."""

    def __init__(self: Self, config: NotificationConfigDTO) -> None:
        self.__channels: list[INotificationChannel] = []
        self.__config = config
        self.__loop: asyncio.AbstractEventLoop | None = None
        self.__queue: asyncio.Queue[str] = asyncio.Queue()
        self.__worker: asyncio.Task | None = None
        self._setup_channels_from_config()

    def _setup_channels_from_config(self: Self) -> None:
        if self.__config.telegram.enabled:
            self.add_telegram_channel(
                bot_token=self.__config.telegram.token,
                chat_id=self.__config.telegram.chat_id,
            )

    def add_channel(self: Self, channel: INotificationChannel) -> None:
        self.__channels.append(channel)

    def add_telegram_channel(self: Self, bot_token: str, chat_id: str) -> None:
        from trailguard.adapters.notification import (  # noqa: PLC0415 # pylint: disable=import-outside-toplevel
            TelegramNotificationChannelAdapter,
        )

        self.add_channel(TelegramNotificationChannelAdapter(bot_token, chat_id))

    def notify(self: Self, message: str) -> bool:
        """Send a notification through all configured channels.

        Args:
            message: The message to send

        Returns:
            bool: True if the message was sent through at least one channel
        """
        LOG.info("Sending notification: %s", message)
        if not self.__channels:
            return False

        success = False
        for channel in self.__channels:
            try:
                if channel.send(message):
                    success = True
            except Exception:  # noqa: BLE001 # pylint: disable=broad-exception-caught
                LOG.exception("Notification channel %r failed", channel)
        return success

    # == Background delivery ====================================================

    def start(self: Self) -> None:
        """
        Deliver event notifications from a background task of the running
        event loop, so sending never blocks it. Without a started service, as
        in the one-shot CLI commands, they are sent synchronously.
        """
        self.__loop = asyncio.get_running_loop()
        self.__queue = asyncio.Queue()
        self.__worker = asyncio.create_task(self.__deliver())

    async def stop(self: Self) -> None:
        """Send the queued messages and stop the background task."""
        if self.__worker is None:
            return
        await self.__queue.join()
        self.__worker.cancel()
        await asyncio.gather(self.__worker, return_exceptions=True)
        self.__worker = None
        self.__loop = None

    async def __deliver(self: Self) -> None:
        while True:
            message = await self.__queue.get()
            try:
                await asyncio.to_thread(self.notify, message)
            finally:
                self.__queue.task_done()

    def dispatch(self: Self, message: str) -> None:
        """Queue the message if the service was started, send it otherwise."""
        if self.__worker is None or self.__loop is None:
            self.notify(message)
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self.__loop:
            self.__queue.put_nowait(message)
        else:
            self.__loop.call_soon_threadsafe(self.__queue.put_nowait, message)

    # == Event handlers =========================================================

    def on_notification(self: Self, event: Event) -> None:
        self.dispatch(event.data["message"])

    def on_order_event(self: Self, event: Event) -> None:
        """Notify about a state change of an order, never raises."""
        order = event.data["order"]
        try:
            message = format_order_message(event.data["kind"], order)
        except Exception:  # noqa: BLE001 # pylint: disable=broad-exception-caught
            LOG.exception("Failed to notify about order '%s'", order.id)
            return
        self.dispatch(message)
