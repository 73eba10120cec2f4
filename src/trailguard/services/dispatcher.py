# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

"""
Execution dispatcher

Turns a triggered order into exactly one settlement. The order is claimed
(``triggered`` -> ``executing``) before the settlement client is called, so a
crash during settlement leaves a visible in-flight record instead of a
second trigger.
"""

import asyncio
from datetime import datetime
from logging import getLogger
from typing import Awaitable, Callable, Self

from trailguard.core.clock import utc_now
from trailguard.core.event_bus import EventBus, publish_order_event
from trailguard.exceptions import (
    ConflictingStateError,
    OrderStoreError,
    SettlementTerminalError,
    SettlementTransientError,
    StaleVersionError,
)
from trailguard.infrastructure.database import OrderStore
from trailguard.interfaces import ISettlementClient
from trailguard.models.order import Order, OrderStatus
from trailguard.services.metrics import MonitorMetrics

LOG = getLogger(__name__)


class ExecutionDispatcher:
    def __init__(  # noqa: PLR0913
        self: Self,
        store: OrderStore,
        settlement_client: ISettlementClient,
        event_bus: EventBus,
        metrics: MonitorMetrics | None = None,
        max_retries: int = 3,
        backoff: float = 1.0,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.__store = store
        self.__settlement_client = settlement_client
        self.__event_bus = event_bus
        self.__metrics = metrics or MonitorMetrics()
        self.__max_retries = max_retries
        self.__backoff = backoff
        self.__clock = clock
        self.__sleep = sleep

    def claim(self: Self, order: Order) -> Order | None:
        """
        Move a triggered order to ``executing``. Returns None if another
        worker claimed it first or the order is no longer triggered.
        """
        try:
            return self.__store.transition(order, OrderStatus.EXECUTING)
        except StaleVersionError:
            LOG.info("Order '%s' was claimed by another worker.", order.id)
            self.__metrics.stale_versions.labels(operation="claim").inc()
        except ConflictingStateError as exc:
            LOG.warning("Cannot claim order '%s': %s", order.id, exc)
        return None

    async def execute(self: Self, order: Order) -> str:
        """
        Settle a claimed order and record the outcome.

        Transient settlement errors are retried with exponential backoff up
        to ``max_retries`` times. Terminal errors, and transient ones after
        the last retry, mark the order as ``failed`` and are re-raised.

        Returns:
            str: The settlement reference
        """
        if order.status != OrderStatus.EXECUTING:
            raise ConflictingStateError(order.id, order.status.value, "execute")

        attempt = 0
        while True:
            attempt += 1
            try:
                settlement_ref = await asyncio.to_thread(
                    self.__settlement_client.submit,
                    order.asset_id,
                    order.amount,
                    order.current_price,
                    order.user_address,
                )
            except SettlementTransientError as exc:
                self.__metrics.settlements.labels(outcome="transient").inc()
                order = order.model_copy(
                    update={"execution_attempts": order.execution_attempts + 1},
                )
                if attempt > self.__max_retries:
                    self.__fail(order, f"Gave up after {attempt} attempts: {exc}")
                    raise

                delay = self.__backoff * 2 ** (attempt - 1)
                LOG.warning(
                    "Settlement of order '%s' failed (attempt %d), retrying in %.1fs: %s",
                    order.id,
                    attempt,
                    delay,
                    exc,
                )
                order = self.__store.update(order)
                await self.__sleep(delay)
                continue
            except SettlementTerminalError as exc:
                self.__metrics.settlements.labels(outcome="terminal").inc()
                self.__fail(
                    order.model_copy(
                        update={"execution_attempts": order.execution_attempts + 1},
                    ),
                    str(exc),
                )
                raise

            self.__metrics.settlements.labels(outcome="success").inc()
            self.__succeed(order, settlement_ref)
            return settlement_ref

    def __succeed(self: Self, order: Order, settlement_ref: str) -> None:
        try:
            executed = self.__store.transition(
                order,
                OrderStatus.EXECUTED,
                execution_price=order.current_price,
                execution_time=self.__clock(),
                settlement_ref=settlement_ref,
                execution_attempts=order.execution_attempts + 1,
            )
        except (OrderStoreError, ConflictingStateError):
            LOG.critical(
                "Order '%s' was settled (%s) but the result could not be stored!",
                order.id,
                settlement_ref,
            )
            raise

        LOG.info(
            "Order '%s' executed at %s, settlement reference: %s",
            executed.id,
            executed.execution_price,
            settlement_ref,
        )
        publish_order_event(self.__event_bus, "executed", executed)

    def __fail(self: Self, order: Order, reason: str) -> None:
        failed = self.__store.transition(
            order,
            OrderStatus.FAILED,
            failure_reason=reason,
            execution_attempts=order.execution_attempts,
        )
        LOG.error("Execution of order '%s' failed: %s", failed.id, reason)
        publish_order_event(self.__event_bus, "failed", failed)
