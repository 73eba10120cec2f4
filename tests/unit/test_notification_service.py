# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

"""
Test module for notification service.

Covers channel management, the order messages and the event handlers.
"""

import asyncio
import time
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, Mock, patch

import pytest

from trailguard.core.event_bus import NOTIFICATION, ORDER_EVENT, Event, EventBus
from trailguard.interfaces import INotificationChannel
from trailguard.models.configuration import NotificationConfigDTO, TelegramConfigDTO
from trailguard.models.order import OrderStatus, TriggerReason
from trailguard.services.notification_service import (
    NotificationService,
    format_order_message,
)

from ..helper import NOW, build_order

TOKEN = "123:abdsljhbfadshkjfgbakrjhfbadjfhbac"  # noqa: S105
CHAT_ID = "456"


@pytest.fixture
def channel() -> Mock:
    channel = Mock(spec=INotificationChannel)
    channel.send.return_value = True
    return channel


@pytest.fixture
def service(channel: Mock) -> NotificationService:
    service = NotificationService(NotificationConfigDTO())
    service.add_channel(channel)
    return service


class TestChannels:
    def test_without_channels(self) -> None:
        assert NotificationService(NotificationConfigDTO()).notify("test") is False

    @patch("trailguard.adapters.notification.TelegramNotificationChannelAdapter")
    def test_telegram_channel_from_config(self, mock_telegram_adapter: MagicMock) -> None:
        NotificationService(
            NotificationConfigDTO(
                telegram=TelegramConfigDTO(token=TOKEN, chat_id=CHAT_ID),
            ),
        )
        mock_telegram_adapter.assert_called_once_with(TOKEN, CHAT_ID)

    def test_one_successful_channel_suffices(
        self,
        service: NotificationService,
        channel: Mock,
    ) -> None:
        failing = Mock(spec=INotificationChannel)
        failing.send.return_value = False
        service.add_channel(failing)

        assert service.notify("hello") is True
        channel.send.assert_called_once_with("hello")
        failing.send.assert_called_once_with("hello")

    def test_raising_channel_does_not_stop_others(
        self,
        channel: Mock,
    ) -> None:
        broken = Mock(spec=INotificationChannel)
        broken.send.side_effect = RuntimeError("boom")
        service = NotificationService(NotificationConfigDTO())
        service.add_channel(broken)
        service.add_channel(channel)

        assert service.notify("hello") is True
        channel.send.assert_called_once_with("hello")


class TestOrderMessages:
    def test_created(self) -> None:
        message = format_order_message(
            "created",
            build_order(take_profit_price=Decimal("1.50")),
        )
        assert message.splitlines() == [
            "*🛡️ Trailing stop created*",
            "Order: `order-1`",
            "Asset: ALGO, amount 100",
            "Entry: 1.00, stop: 0.900",
            "Take profit: 1.50",
        ]

    def test_triggered(self) -> None:
        message = format_order_message(
            "triggered",
            build_order(
                status=OrderStatus.TRIGGERED,
                current_price=Decimal("0.85"),
                trigger_reason=TriggerReason.STOP_LOSS,
            ),
        )
        assert "Price: 0.85 (stop_loss)" in message

    def test_executed(self) -> None:
        message = format_order_message(
            "executed",
            build_order(
                status=OrderStatus.EXECUTED,
                execution_price=Decimal("0.85"),
                execution_time=NOW + timedelta(minutes=1),
                settlement_ref="TXID-1",
                pnl=Decimal(-15),
                pnl_pct=Decimal(-15),
            ),
        )
        assert "Reference: `TXID-1`" in message
        assert "PnL: -15 (-15.00%)" in message

    def test_failed(self) -> None:
        message = format_order_message(
            "failed",
            build_order(status=OrderStatus.FAILED, failure_reason="rejected"),
        )
        assert message.startswith("*❌ Order execution failed*")
        assert "Reason: rejected" in message

    def test_unknown_kind_uses_the_kind_as_title(self) -> None:
        assert format_order_message("archived", build_order()).startswith("*archived*")


class TestEventHandlers:
    def test_on_order_event(self, service: NotificationService, channel: Mock) -> None:
        event_bus = EventBus()
        event_bus.subscribe(ORDER_EVENT, service.on_order_event)

        event_bus.publish(
            Event(type=ORDER_EVENT, data={"kind": "cancelled", "order": build_order()}),
        )

        message = channel.send.call_args.args[0]
        assert message.startswith("*🚫 Order cancelled*")

    def test_on_notification(self, service: NotificationService, channel: Mock) -> None:
        event_bus = EventBus()
        event_bus.subscribe(NOTIFICATION, service.on_notification)

        event_bus.publish(Event(type=NOTIFICATION, data={"message": "engine paused"}))

        channel.send.assert_called_once_with("engine paused")

    def test_on_order_event_never_raises(
        self,
        service: NotificationService,
        channel: Mock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        with patch(
            "trailguard.services.notification_service.format_order_message",
            side_effect=KeyError("kind"),
        ):
            service.on_order_event(
                Event(type=ORDER_EVENT, data={"kind": "executed", "order": build_order()}),
            )
        assert "Failed to notify about order 'order-1'" in caplog.text
        channel.send.assert_not_called()


class TestBackgroundDelivery:
    @pytest.mark.asyncio
    async def test_slow_channel_does_not_block_the_loop(self) -> None:
        slow = Mock(spec=INotificationChannel)
        slow.send.side_effect = lambda message: time.sleep(0.3) or True
        service = NotificationService(NotificationConfigDTO())
        service.add_channel(slow)
        service.start()

        loop = asyncio.get_running_loop()
        started = loop.time()
        for kind in ("triggered", "executed"):
            service.on_order_event(
                Event(type=ORDER_EVENT, data={"kind": kind, "order": build_order()}),
            )
        assert loop.time() - started < 0.1

        gaps = []
        last = loop.time()
        for _ in range(20):
            await asyncio.sleep(0.01)
            gaps.append(loop.time() - last)
            last = loop.time()
        assert max(gaps) < 0.2

        await service.stop()
        assert slow.send.call_count == 2

    @pytest.mark.asyncio
    async def test_stop_sends_queued_messages_in_order(
        self,
        service: NotificationService,
        channel: Mock,
    ) -> None:
        service.start()
        for message in ("first", "second", "third"):
            service.on_notification(Event(type=NOTIFICATION, data={"message": message}))
        await service.stop()

        assert [call.args[0] for call in channel.send.call_args_list] == [
            "first",
            "second",
            "third",
        ]

    @pytest.mark.asyncio
    async def test_sends_synchronously_after_stop(
        self,
        service: NotificationService,
        channel: Mock,
    ) -> None:
        service.start()
        await service.stop()

        service.dispatch("after")
        channel.send.assert_called_once_with("after")

    @pytest.mark.asyncio
    async def test_dispatch_from_worker_thread(
        self,
        service: NotificationService,
        channel: Mock,
    ) -> None:
        service.start()
        await asyncio.to_thread(service.dispatch, "from a thread")
        # the message is queued by the loop on its next iteration
        await asyncio.sleep(0)
        await service.stop()

        channel.send.assert_called_once_with("from a thread")
