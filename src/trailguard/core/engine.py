# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

import asyncio
import signal
import sys
from importlib.metadata import version
from logging import getLogger
from typing import Self

from trailguard.core.event_bus import (
    NOTIFICATION,
    ORDER_EVENT,
    Event,
    EventBus,
    publish_order_event,
)
from trailguard.core.state_machine import StateMachine, States
from trailguard.exceptions import EngineStateError
from trailguard.infrastructure.database import DBConnect, OrderStore
from trailguard.interfaces import ISettlementClient
from trailguard.models.configuration import (
    DBConfigDTO,
    EngineConfigDTO,
    NotificationConfigDTO,
    PriceFeedConfigDTO,
)
from trailguard.services.dispatcher import ExecutionDispatcher
from trailguard.services.metrics import MonitorMetrics
from trailguard.services.monitor import MonitorLoop
from trailguard.services.notification_service import NotificationService
from trailguard.services.order_service import OrderService
from trailguard.services.price_feed import PriceFeedAggregator

LOG = getLogger(__name__)


class Engine:
    """
    Orchestrates the components of the trailing stop engine and runs the
    monitor loop until a shutdown is requested.
    """

    def __init__(
        self: Self,
        engine_config: EngineConfigDTO,
        db_config: DBConfigDTO,
        price_feed_config: PriceFeedConfigDTO,
        notification_config: NotificationConfigDTO,
    ) -> None:
        LOG.info("Initiate the trailing stop engine (v%s)", version("trailguard"))
        LOG.debug("Config: %s", engine_config)

        self.__config = engine_config
        self.__event_bus = EventBus()
        self.__state_machine = StateMachine()
        self.__metrics = MonitorMetrics()

        # == Infrastructure components =========================================
        ##
        self.__db = DBConnect(db_config)
        self.__store = OrderStore(db=self.__db)
        self.__db.init_db()

        # == Application services ==============================================
        ##
        self.__notification_service = NotificationService(notification_config)
        self.__price_feed = self.__price_feed_factory(price_feed_config)
        self.__order_service = OrderService(
            store=self.__store,
            price_feed=self.__price_feed,
            event_bus=self.__event_bus,
        )
        self.__dispatcher = ExecutionDispatcher(
            store=self.__store,
            settlement_client=self.__settlement_factory(),
            event_bus=self.__event_bus,
            metrics=self.__metrics,
            max_retries=self.__config.settlement_max_retries,
            backoff=self.__config.settlement_backoff,
        )
        self.__monitor = MonitorLoop(
            config=self.__config,
            store=self.__store,
            price_feed=self.__price_feed,
            dispatcher=self.__dispatcher,
            event_bus=self.__event_bus,
            state_machine=self.__state_machine,
            metrics=self.__metrics,
        )

        self.__setup_event_handlers()

    @property
    def state_machine(self: Self) -> StateMachine:
        return self.__state_machine

    @property
    def order_service(self: Self) -> OrderService:
        return self.__order_service

    def __price_feed_factory(self: Self, config: PriceFeedConfigDTO) -> PriceFeedAggregator:
        from trailguard.adapters.price_sources import (  # noqa: PLC0415 # pylint: disable=import-outside-toplevel
            create_price_sources,
        )

        names = {name for names in config.sources.values() for name in names}
        return PriceFeedAggregator(
            config=config,
            sources=create_price_sources(names),
            metrics=self.__metrics,
        )

    def __settlement_factory(self: Self) -> ISettlementClient:
        """Create the settlement client based on the configuration."""
        from trailguard.adapters.settlement import (  # noqa: PLC0415 # pylint: disable=import-outside-toplevel
            DryRunSettlementClientAdapter,
            HTTPSettlementClientAdapter,
        )

        if self.__config.dry_run:
            LOG.warning("Dry-run mode enabled, orders will not be settled!")
            return DryRunSettlementClientAdapter()
        return HTTPSettlementClientAdapter(
            url=self.__config.settlement_url,  # type: ignore[arg-type]
            token=self.__config.settlement_token,
        )

    def __setup_event_handlers(self: Self) -> None:
        self.__event_bus.subscribe(
            ORDER_EVENT,
            self.__notification_service.on_order_event,
        )
        self.__event_bus.subscribe(
            NOTIFICATION,
            self.__notification_service.on_notification,
        )

    def __notify(self: Self, message: str) -> None:
        self.__event_bus.publish(Event(type=NOTIFICATION, data={"message": message}))

    def pause(self: Self) -> None:
        try:
            self.__state_machine.transition_to(States.PAUSED)
        except ValueError as exc:
            LOG.warning("Cannot pause the engine: %s", exc)
            return
        LOG.warning("Engine paused, no order will be evaluated until resumed.")
        self.__notify(f"⏸️ {self.__config.name} paused.")

    def resume(self: Self) -> None:
        if self.__state_machine.state != States.PAUSED:
            LOG.warning("Engine is not paused, nothing to resume.")
            return
        self.__state_machine.transition_to(States.RUNNING)
        LOG.info("Engine resumed.")
        self.__notify(f"▶️ {self.__config.name} resumed.")

    def report_in_flight(self: Self) -> None:
        """
        Report orders left in ``executing`` by a previous run. Their settlement
        outcome is unknown, so they are not submitted again.
        """
        for order in self.__order_service.get_in_flight():
            LOG.warning(
                "Order '%s' is in flight since %s, resolve it manually.",
                order.id,
                order.updated_at,
            )
            publish_order_event(self.__event_bus, "in_flight", order)

    async def run(self: Self) -> None:
        """Start the engine"""
        if self.__state_machine.state != States.INITIALIZING:
            raise EngineStateError(
                f"The engine cannot be started in state {self.__state_machine.state.name}",
            )
        LOG.info("Starting the trailing stop engine...")

        # ======================================================================
        # Handle the signals
        #
        # SIGINT and SIGTERM request a controlled shutdown: the monitor loop
        # completes its current tick and stops. SIGUSR1 pauses the evaluation
        # of orders, SIGUSR2 resumes it.
        ##
        def _signal_handler() -> None:
            LOG.warning("Initiate a controlled shutdown of the engine...")
            self.__state_machine.transition_to(States.SHUTDOWN_REQUESTED)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _signal_handler)
        loop.add_signal_handler(signal.SIGUSR1, self.pause)
        loop.add_signal_handler(signal.SIGUSR2, self.resume)

        if self.__config.metrics_port:
            self.__metrics.serve(self.__config.metrics_port)

        self.__notification_service.start()
        self.report_in_flight()
        self.__state_machine.transition_to(States.RUNNING)
        self.__notify(f"✅ {self.__config.name} is running!")

        monitor = asyncio.create_task(self.__monitor.run())
        try:
            await asyncio.wait(
                [
                    monitor,
                    asyncio.create_task(self.__state_machine.wait_for_shutdown()),
                ],
                return_when=asyncio.FIRST_COMPLETED,
            )
            # The loop finishes its current tick after a shutdown request
            await monitor
        except asyncio.CancelledError as exc:
            self.__set_error()
            await self.terminate(f"The engine was interrupted: {exc}")
        except Exception as exc:  # noqa: BLE001 # pylint: disable=broad-exception-caught
            LOG.exception("The monitor loop crashed.")
            self.__set_error()
            await self.terminate(f"The engine was interrupted by exception: {exc}")

        if self.__state_machine.state == States.SHUTDOWN_REQUESTED:
            await self.terminate(
                "The engine was shut down successfully!",
                exception=False,
            )
        else:
            self.__set_error()
            await self.terminate("The engine was shut down due to an error!")

    def __set_error(self: Self) -> None:
        if self.__state_machine.state != States.SHUTDOWN_REQUESTED:
            self.__state_machine.transition_to(States.ERROR)

    async def terminate(
        self: Self,
        reason: str = "",
        *,
        exception: bool = True,
    ) -> None:
        """
        Handle the termination of the engine.

        1. Closes the connection to the database.
        2. Notifies the user about the termination and waits until all
           queued notifications are sent.
        3. Exits the process.
        """
        self.__db.close()
        self.__notify(f"{self.__config.name} terminated.\nReason: {reason}")
        await self.__notification_service.stop()
        sys.exit(exception)
