# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

"""
Monitor loop

Each tick loads the active orders grouped by asset, fetches one price per
asset, evaluates every order against it and hands triggered orders to the
dispatcher. Price fetches and settlements are the only suspension points and
run concurrently, bounded by ``max_workers``. All writes go through the
version guard of the order store.
"""

import asyncio
from datetime import datetime
from logging import getLogger
from typing import Callable, Self

from trailguard.core.clock import utc_now
from trailguard.core.event_bus import (
    PRICE_UPDATE,
    Event,
    EventBus,
    publish_order_event,
)
from trailguard.core.state_machine import StateMachine, States
from trailguard.core.trailing import EVALUATED_FIELDS, evaluate
from trailguard.exceptions import (
    PriceUnavailableError,
    SettlementError,
    StaleVersionError,
)
from trailguard.infrastructure.database import OrderStore
from trailguard.models.configuration import EngineConfigDTO
from trailguard.models.order import Order, OrderStatus
from trailguard.models.price import PriceSample
from trailguard.services.dispatcher import ExecutionDispatcher
from trailguard.services.metrics import MonitorMetrics
from trailguard.services.price_feed import PriceFeedAggregator

LOG = getLogger(__name__)


class MonitorLoop:
    def __init__(  # noqa: PLR0913
        self: Self,
        config: EngineConfigDTO,
        store: OrderStore,
        price_feed: PriceFeedAggregator,
        dispatcher: ExecutionDispatcher,
        event_bus: EventBus,
        state_machine: StateMachine,
        metrics: MonitorMetrics | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.__config = config
        self.__store = store
        self.__price_feed = price_feed
        self.__dispatcher = dispatcher
        self.__event_bus = event_bus
        self.__state_machine = state_machine
        self.__metrics = metrics or MonitorMetrics()
        self.__clock = clock
        self.__tick_lock = asyncio.Lock()
        self.__workers = asyncio.Semaphore(config.max_workers)

    async def run(self: Self) -> None:
        """
        Tick every ``interval`` seconds until shutdown is requested. A running
        tick is always completed, the next one starts after it.
        """
        loop = asyncio.get_running_loop()
        LOG.info("Starting the monitor loop (interval: %ss)...", self.__config.interval)
        while self.__state_machine.state not in (
            States.SHUTDOWN_REQUESTED,
            States.ERROR,
        ):
            started = loop.time()
            if self.__state_machine.state == States.PAUSED:
                LOG.info("Engine is paused, skipping tick.")
                self.__metrics.ticks.labels(outcome="paused").inc()
            else:
                await self.tick()

            try:
                await asyncio.wait_for(
                    self.__state_machine.wait_for_shutdown(),
                    timeout=max(0.0, self.__config.interval - (loop.time() - started)),
                )
            except TimeoutError:
                continue
        LOG.info("Monitor loop stopped.")

    async def tick(self: Self) -> bool:
        """
        Run a single tick. Returns False if the previous tick is still running
        and this one was skipped.
        """
        if self.__tick_lock.locked():
            LOG.warning("The previous tick is still running, skipping.")
            self.__metrics.ticks.labels(outcome="overlap").inc()
            return False

        async with self.__tick_lock:
            with self.__metrics.tick_duration.time():
                await self.__tick()
            self.__metrics.ticks.labels(outcome="completed").inc()
        return True

    async def __tick(self: Self) -> None:
        # Orders triggered before a restart but never claimed
        claimed = [
            order
            for triggered in self.__store.get_by_status(OrderStatus.TRIGGERED)
            if (order := self.__dispatcher.claim(triggered))
        ]

        grouped = self.__store.get_active_by_asset()
        self.__metrics.active_orders.set(sum(len(orders) for orders in grouped.values()))
        LOG.debug(
            "Tick: %d active orders on %d assets.",
            sum(len(orders) for orders in grouped.values()),
            len(grouped),
        )

        samples = await asyncio.gather(
            *(self.__fetch_price(asset_id) for asset_id in grouped),
        )
        for asset_id, sample in zip(grouped, samples, strict=True):
            if sample is None:
                continue
            for order in grouped[asset_id]:
                try:
                    if executing := self.__process(order, sample):
                        claimed.append(executing)
                except Exception:  # noqa: BLE001 # pylint: disable=broad-exception-caught
                    LOG.exception("Failed to process order '%s'", order.id)
                    self.__metrics.order_errors.inc()

        await asyncio.gather(*(self.__execute(order) for order in claimed))

    async def __fetch_price(self: Self, asset_id: str) -> PriceSample | None:
        """Returns a usable sample or None if the asset has to be skipped"""
        async with self.__workers:
            try:
                sample = await asyncio.to_thread(self.__price_feed.get_price, asset_id)
            except PriceUnavailableError as exc:
                LOG.warning("Skipping asset '%s' this tick: %s", asset_id, exc)
                self.__metrics.skipped_assets.labels(reason="unavailable").inc()
                return None
            except Exception:  # noqa: BLE001 # pylint: disable=broad-exception-caught
                LOG.exception("Unexpected error while fetching the price of '%s'", asset_id)
                self.__metrics.skipped_assets.labels(reason="error").inc()
                return None

        if sample.is_fallback:
            LOG.warning(
                "Skipping asset '%s' this tick: only the fallback price is available.",
                asset_id,
            )
            self.__metrics.skipped_assets.labels(reason="fallback").inc()
            return None

        if (age := sample.age(self.__clock())) > self.__config.max_price_age:
            LOG.warning(
                "Skipping asset '%s' this tick: price is %.0f seconds old.",
                asset_id,
                age,
            )
            self.__metrics.skipped_assets.labels(reason="stale").inc()
            return None

        try:
            self.__event_bus.publish(Event(type=PRICE_UPDATE, data={"sample": sample}))
        except Exception:  # noqa: BLE001 # pylint: disable=broad-exception-caught
            LOG.exception("A price update subscriber failed for '%s'", asset_id)
        return sample

    def __process(self: Self, order: Order, sample: PriceSample) -> Order | None:
        """
        Evaluate an order and persist the result. Returns the claimed order
        if it triggered and this worker won the claim.
        """
        evaluation = evaluate(order, sample)

        if not evaluation.trigger:
            if evaluation.order == order:
                return None
            try:
                self.__store.update(evaluation.order)
            except StaleVersionError:
                LOG.debug("Order '%s' changed concurrently, re-reading next tick.", order.id)
                self.__metrics.stale_versions.labels(operation="update").inc()
            return None

        try:
            triggered = self.__store.transition(
                order,
                OrderStatus.TRIGGERED,
                **{field: getattr(evaluation.order, field) for field in EVALUATED_FIELDS},
            )
        except StaleVersionError:
            LOG.info("Order '%s' changed before it could be triggered.", order.id)
            self.__metrics.stale_versions.labels(operation="trigger").inc()
            return None

        LOG.info(
            "Order '%s' triggered by %s at %s (stop: %s, high: %s).",
            triggered.id,
            evaluation.reason,
            sample.price,
            triggered.stop_price,
            triggered.high_water_mark,
        )
        self.__metrics.triggers.labels(reason=evaluation.reason.value).inc()
        publish_order_event(self.__event_bus, "triggered", triggered)
        return self.__dispatcher.claim(triggered)

    async def __execute(self: Self, order: Order) -> None:
        async with self.__workers:
            try:
                await self.__dispatcher.execute(order)
            except SettlementError:
                # already recorded as failed by the dispatcher
                pass
            except Exception:  # noqa: BLE001 # pylint: disable=broad-exception-caught
                LOG.exception(
                    "Execution of order '%s' was interrupted, it stays in flight.",
                    order.id,
                )
                self.__metrics.order_errors.inc()
