# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Any, Callable, Self

if TYPE_CHECKING:
    from trailguard.models.order import Order

LOG = getLogger(__name__)

ORDER_EVENT = "order_event"
PRICE_UPDATE = "price_update"
NOTIFICATION = "notification"


@dataclass(frozen=True)
class Event:
    """Event passed between the engine components"""

    type: str
    data: dict[str, Any] = field(default_factory=dict)


class EventBus:
    """Central event bus for communication between components"""

    def __init__(self: Self) -> None:
        self._subscribers: dict[str, list[Callable[[Event], None]]] = {}

    def subscribe(
        self: Self,
        event_type: str,
        callback: Callable[[Event], None],
    ) -> None:
        """Subscribe to an event type"""
        if event_type not in self._subscribers:
            self._subscribers[event_type] = []
        self._subscribers[event_type].append(callback)

    def publish(self: Self, event: Event) -> None:
        """Publish an event to all subscribers"""
        if event.type not in self._subscribers:
            return

        for callback in self._subscribers[event.type]:
            callback(event)


def publish_order_event(event_bus: EventBus, kind: str, order: Order) -> None:
    """
    Announce a state change of an order. Subscriber failures are logged and
    never reach the caller, the state change already happened.
    """
    try:
        event_bus.publish(Event(type=ORDER_EVENT, data={"kind": kind, "order": order}))
    except Exception:  # noqa: BLE001 # pylint: disable=broad-exception-caught
        LOG.exception("Failed to publish the '%s' event of order '%s'", kind, order.id)
