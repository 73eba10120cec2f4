# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

"""Unit tests for the engine wiring and lifecycle."""

from collections.abc import Generator
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest

from trailguard.adapters.settlement import (
    DryRunSettlementClientAdapter,
    HTTPSettlementClientAdapter,
)
from trailguard.core.engine import Engine
from trailguard.core.state_machine import States
from trailguard.exceptions import EngineStateError
from trailguard.interfaces import INotificationChannel
from trailguard.models.configuration import (
    DBConfigDTO,
    EngineConfigDTO,
    NotificationConfigDTO,
    PriceFeedConfigDTO,
)
from trailguard.models.order import CreateOrderRequest, OrderStatus

from ..helper import USER, build_order


@pytest.fixture
def notification_service() -> Generator[MagicMock, None, None]:
    with patch("trailguard.core.engine.NotificationService") as mock_service:
        mock_service.return_value.stop = AsyncMock()
        yield mock_service.return_value


@pytest.fixture
def monitor_loop() -> Generator[MagicMock, None, None]:
    with patch("trailguard.core.engine.MonitorLoop") as mock_monitor:
        mock_monitor.return_value.run = AsyncMock()
        yield mock_monitor.return_value


def make_engine(**config: object) -> Engine:
    with patch("trailguard.core.engine.version", return_value="0.1.0"):
        return Engine(
            engine_config=EngineConfigDTO(**{"dry_run": True} | config),
            db_config=DBConfigDTO(sqlite_file=":memory:"),
            price_feed_config=PriceFeedConfigDTO(),
            notification_config=NotificationConfigDTO(),
        )


def notifications(notification_service: MagicMock) -> list[str]:
    return [
        call.args[0].data["message"]
        for call in notification_service.on_notification.call_args_list
    ]


class TestWiring:
    def test_dry_run_settlement(self) -> None:
        engine = make_engine()
        dispatcher = engine._Engine__dispatcher
        assert isinstance(
            dispatcher._ExecutionDispatcher__settlement_client,
            DryRunSettlementClientAdapter,
        )
        assert engine.state_machine.state == States.INITIALIZING

    def test_http_settlement(self) -> None:
        engine = make_engine(dry_run=False, settlement_url="https://gateway.local")
        dispatcher = engine._Engine__dispatcher
        assert isinstance(
            dispatcher._ExecutionDispatcher__settlement_client,
            HTTPSettlementClientAdapter,
        )

    def test_order_events_are_notified(self, notification_service: MagicMock) -> None:
        engine = make_engine()
        order = engine.order_service.create_order(
            CreateOrderRequest(
                asset_id="0",
                amount=Decimal(1),
                trail_distance=Decimal(10),
                entry_price=Decimal(1),
                user_address=USER,
            ),
        )
        event = notification_service.on_order_event.call_args.args[0]
        assert event.data == {"kind": "created", "order": order}


class TestPauseResume:
    def test_pause_and_resume(self, notification_service: MagicMock) -> None:
        engine = make_engine(name="guard")
        engine.state_machine.transition_to(States.RUNNING)

        engine.pause()
        assert engine.state_machine.state == States.PAUSED
        engine.resume()
        assert engine.state_machine.state == States.RUNNING

        assert notifications(notification_service) == [
            "⏸️ guard paused.",
            "▶️ guard resumed.",
        ]

    def test_pause_before_running(
        self,
        notification_service: MagicMock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        engine = make_engine()
        engine.pause()
        assert engine.state_machine.state == States.INITIALIZING
        assert "Cannot pause the engine" in caplog.text
        notification_service.on_notification.assert_not_called()

    def test_resume_without_pause(self, notification_service: MagicMock) -> None:
        engine = make_engine()
        engine.state_machine.transition_to(States.RUNNING)
        engine.resume()
        assert engine.state_machine.state == States.RUNNING
        notification_service.on_notification.assert_not_called()


def test_report_in_flight(notification_service: MagicMock) -> None:
    engine = make_engine()
    store = engine._Engine__store
    store.add(build_order(id="a"))
    store.add(build_order(id="b", status=OrderStatus.EXECUTING))

    engine.report_in_flight()

    events = [call.args[0] for call in notification_service.on_order_event.call_args_list]
    assert [(event.data["kind"], event.data["order"].id) for event in events] == [
        ("in_flight", "b"),
    ]
    # in-flight orders are reported only, never resubmitted
    assert store.get("b").status == OrderStatus.EXECUTING


class TestRun:
    @pytest.mark.asyncio
    async def test_controlled_shutdown(
        self,
        monitor_loop: MagicMock,
        notification_service: MagicMock,
    ) -> None:
        engine = make_engine(name="guard")
        monitor_loop.run.side_effect = lambda: engine.state_machine.transition_to(
            States.SHUTDOWN_REQUESTED,
        )

        with pytest.raises(SystemExit) as exc_info:
            await engine.run()

        assert exc_info.value.code is False
        monitor_loop.run.assert_awaited_once()
        messages = notifications(notification_service)
        assert messages[0] == "✅ guard is running!"
        assert "The engine was shut down successfully!" in messages[-1]
        notification_service.start.assert_called_once()
        notification_service.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_termination_notice_is_delivered(
        self,
        monitor_loop: MagicMock,
    ) -> None:
        engine = make_engine(name="guard")
        channel = Mock(spec=INotificationChannel)
        channel.send.return_value = True
        engine._Engine__notification_service.add_channel(channel)
        monitor_loop.run.side_effect = lambda: engine.state_machine.transition_to(
            States.SHUTDOWN_REQUESTED,
        )

        with pytest.raises(SystemExit):
            await engine.run()

        messages = [call.args[0] for call in channel.send.call_args_list]
        assert messages[0] == "✅ guard is running!"
        assert "The engine was shut down successfully!" in messages[-1]

    @pytest.mark.asyncio
    async def test_crashing_monitor(
        self,
        monitor_loop: MagicMock,
        notification_service: MagicMock,
    ) -> None:
        engine = make_engine()
        monitor_loop.run.side_effect = RuntimeError("database gone")

        with pytest.raises(SystemExit) as exc_info:
            await engine.run()

        assert exc_info.value.code is True
        assert engine.state_machine.state == States.ERROR
        assert "database gone" in notifications(notification_service)[-1]

    @pytest.mark.asyncio
    async def test_metrics_server(self, monitor_loop: MagicMock) -> None:
        engine = make_engine(metrics_port=9464)
        monitor_loop.run.side_effect = lambda: engine.state_machine.transition_to(
            States.SHUTDOWN_REQUESTED,
        )

        with (
            patch("trailguard.services.metrics.start_http_server") as mock_server,
            pytest.raises(SystemExit),
        ):
            await engine.run()

        mock_server.assert_called_once_with(
            9464,
            registry=engine._Engine__metrics.registry,
        )

    @pytest.mark.asyncio
    async def test_cannot_run_twice(self, monitor_loop: MagicMock) -> None:
        engine = make_engine()
        engine.state_machine.transition_to(States.RUNNING)

        with pytest.raises(EngineStateError, match="state RUNNING"):
            await engine.run()
        monitor_loop.run.assert_not_awaited()
