# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

"""
User-facing order operations: creation, cancellation, queries, statistics and
the manual reconciliation of in-flight orders.
"""

from datetime import datetime
from decimal import Decimal
from logging import getLogger
from typing import Callable, Literal, Self
from uuid import uuid4

from trailguard.core.clock import utc_now
from trailguard.core.event_bus import EventBus, publish_order_event
from trailguard.core.order_state import TERMINAL_STATUSES, TRANSIENT_STATUSES
from trailguard.core.trailing import compute_stop_price
from trailguard.exceptions import (
    ConflictingStateError,
    OrderNotFoundError,
    StaleVersionError,
)
from trailguard.infrastructure.database import OrderStore
from trailguard.models.order import (
    CreateOrderRequest,
    Order,
    OrderStatus,
    OrderType,
    TrailDistanceType,
)
from trailguard.models.reporting import BestOrder, PlatformMetrics, UserStats
from trailguard.services.price_feed import PriceFeedAggregator

LOG = getLogger(__name__)

CANCEL_ATTEMPTS = 3
AGGRESSIVE_THRESHOLD = Decimal(10000)
MODERATE_THRESHOLD = Decimal(1000)


class OrderService:
    def __init__(
        self: Self,
        store: OrderStore,
        price_feed: PriceFeedAggregator,
        event_bus: EventBus,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.__store = store
        self.__price_feed = price_feed
        self.__event_bus = event_bus
        self.__clock = clock

    # == Commands ===============================================================

    def create_order(self: Self, request: CreateOrderRequest) -> Order:
        """
        Create a new active order. Without an entry price, the current price
        of the asset is used as entry price.

        Raises:
            ValueError: if the asset is not registered
            PriceUnavailableError: if no entry price is given and no price
                could be fetched
            pydantic.ValidationError: if the request becomes invalid with the
                fetched entry price
        """
        if not (asset := self.__price_feed.get_asset(request.asset_id)):
            raise ValueError(f"Unknown asset '{request.asset_id}'")

        if request.entry_price is None:
            sample = self.__price_feed.get_price(request.asset_id)
            LOG.info(
                "Using the current %s price %s (%s) as entry price.",
                asset.symbol,
                sample.price,
                sample.source_name,
            )
            request = CreateOrderRequest.model_validate(
                request.model_dump() | {"entry_price": sample.price},
            )

        entry_price: Decimal = request.entry_price  # type: ignore[assignment]
        now = self.__clock()
        order = Order(
            id=uuid4().hex,
            user_address=request.user_address,
            asset_id=request.asset_id,
            asset_symbol=asset.symbol,
            asset_name=asset.name,
            order_type=(
                OrderType.TRAILING
                if request.take_profit_price is None
                else OrderType.BRACKET
            ),
            amount=request.amount,
            entry_price=entry_price,
            high_water_mark=entry_price,
            trail_distance=request.trail_distance,
            trail_distance_type=request.trail_distance_type,
            stop_price=compute_stop_price(
                entry_price,
                request.trail_distance,
                request.trail_distance_type,
            ),
            take_profit_price=request.take_profit_price,
            current_price=entry_price,
            created_at=now,
            updated_at=now,
        )
        order = self.__store.add(order)
        LOG.info(
            "Created %s order '%s' on %s for %s (stop %s).",
            order.order_type.value,
            order.id,
            asset.symbol,
            order.user_address,
            order.stop_price,
        )
        publish_order_event(self.__event_bus, "created", order)
        return order

    def cancel_order(self: Self, order_id: str, user_address: str) -> Order:
        """
        Cancel an active order of the user.

        Competes with the monitor through the version guard. If the monitor
        only updated the trailing state in between, the cancellation is
        retried on the fresh record; if it triggered the order, the
        cancellation fails with ConflictingStateError.
        """
        for attempt in range(1, CANCEL_ATTEMPTS + 1):
            order = self.get_order(order_id, user_address)
            try:
                order = self.__store.transition(order, OrderStatus.CANCELLED)
            except StaleVersionError:
                LOG.debug(
                    "Order '%s' changed while cancelling (attempt %d).",
                    order_id,
                    attempt,
                )
                continue
            LOG.info("Cancelled order '%s'.", order.id)
            publish_order_event(self.__event_bus, "cancelled", order)
            return order
        raise StaleVersionError(order_id, order.version)

    def resolve_in_flight(
        self: Self,
        order_id: str,
        settlement_ref: str | None = None,
        failure_reason: str | None = None,
    ) -> Order:
        """
        Record the outcome of an order left in ``executing``, e.g. after a
        crash during settlement. Exactly one of ``settlement_ref`` and
        ``failure_reason`` must be given.
        """
        if (settlement_ref is None) == (failure_reason is None):
            raise ValueError("Pass either a settlement reference or a failure reason")

        order = self.__store.get(order_id)
        if settlement_ref is not None:
            order = self.__store.transition(
                order,
                OrderStatus.EXECUTED,
                execution_price=order.current_price,
                execution_time=self.__clock(),
                settlement_ref=settlement_ref,
            )
            kind = "executed"
        else:
            order = self.__store.transition(
                order,
                OrderStatus.FAILED,
                failure_reason=failure_reason,
            )
            kind = "failed"
        LOG.warning("Order '%s' resolved manually as %s.", order.id, kind)
        publish_order_event(self.__event_bus, kind, order)
        return order

    def retry_failed(self: Self, order_id: str, user_address: str) -> Order:
        """
        Create a new active order with the parameters of a failed one. The
        failed order itself stays untouched.
        """
        failed = self.get_order(order_id, user_address)
        if failed.status != OrderStatus.FAILED:
            raise ConflictingStateError(failed.id, failed.status.value, "retry")

        LOG.info("Retrying failed order '%s' as a new order.", failed.id)
        return self.create_order(
            CreateOrderRequest(
                asset_id=failed.asset_id,
                amount=failed.amount,
                trail_distance=failed.trail_distance,
                trail_distance_type=failed.trail_distance_type,
                user_address=failed.user_address,
                take_profit_price=failed.take_profit_price,
            ),
        )

    # == Queries ================================================================

    def get_order(self: Self, order_id: str, user_address: str) -> Order:
        """Orders of other users are reported as not found."""
        order = self.__store.get(order_id)
        if order.user_address != user_address:
            raise OrderNotFoundError(order_id)
        return order

    def list_orders(
        self: Self,
        user_address: str,
        scope: Literal["active", "terminal", "all"] = "active",
    ) -> list[Order]:
        statuses = {
            "active": TRANSIENT_STATUSES,
            "terminal": TERMINAL_STATUSES,
            "all": None,
        }[scope]
        return self.__store.get_user_orders(user_address, statuses=statuses)

    def get_in_flight(self: Self) -> list[Order]:
        return self.__store.get_by_status(OrderStatus.EXECUTING)

    def get_platform_metrics(self: Self) -> PlatformMetrics:
        active = self.__store.get_by_status(OrderStatus.ACTIVE)
        executed = self.__store.count(filters={"status": OrderStatus.EXECUTED.value})
        failed = self.__store.count(filters={"status": OrderStatus.FAILED.value})
        percentage_distances = [
            order.trail_distance
            for order in active
            if order.trail_distance_type == TrailDistanceType.PERCENTAGE
        ]

        return PlatformMetrics(
            total_active_orders=len(active),
            total_protected_value=sum(
                (order.amount * order.current_price for order in active),
                Decimal(0),
            ),
            execution_success_rate=(
                Decimal(executed) / Decimal(executed + failed) * 100
                if executed + failed
                else None
            ),
            average_trail_distance=(
                sum(percentage_distances, Decimal(0)) / len(percentage_distances)
                if percentage_distances
                else None
            ),
            total_executed_orders=executed,
            total_failed_orders=failed,
        )

    def get_user_stats(self: Self, user_address: str) -> UserStats:
        orders = self.__store.get_user_orders(user_address)
        active = [order for order in orders if order.status == OrderStatus.ACTIVE]
        executed = [order for order in orders if order.status == OrderStatus.EXECUTED]

        protected_value = sum(
            (order.amount * order.current_price for order in active),
            Decimal(0),
        )
        hold_times = [
            (order.execution_time - order.created_at).total_seconds() / 3600
            for order in executed
            if order.execution_time is not None
        ]
        best = max(orders, key=lambda order: order.pnl_pct, default=None)

        if protected_value > AGGRESSIVE_THRESHOLD:
            risk_profile = "aggressive"
        elif protected_value > MODERATE_THRESHOLD:
            risk_profile = "moderate"
        else:
            risk_profile = "conservative"

        return UserStats(
            address=user_address,
            active_orders=len(active),
            total_orders_created=len(orders),
            successful_executions=len(executed),
            total_protected_value=protected_value,
            average_hold_time=sum(hold_times) / len(hold_times) if hold_times else None,
            best_performing_order=(
                BestOrder(
                    order_id=best.id,
                    asset=best.asset_symbol or best.asset_id,
                    pnl_pct=best.pnl_pct,
                )
                if best
                else None
            ),
            risk_profile=risk_profile,
        )
