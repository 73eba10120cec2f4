# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

"""
Transition rules of a single order.

    active ──► triggered ──► executing ──► executed
      │                          │
      └──► cancelled             └──► failed

``executed``, ``cancelled`` and ``failed`` are terminal. Every transition not
listed here is rejected.
"""

from trailguard.exceptions import ConflictingStateError, IllegalTransitionError
from trailguard.models.order import Order, OrderStatus

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.ACTIVE: frozenset({OrderStatus.TRIGGERED, OrderStatus.CANCELLED}),
    OrderStatus.TRIGGERED: frozenset({OrderStatus.EXECUTING}),
    OrderStatus.EXECUTING: frozenset({OrderStatus.EXECUTED, OrderStatus.FAILED}),
    OrderStatus.EXECUTED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.FAILED: frozenset(),
}

TRANSIENT_STATUSES = frozenset(
    {OrderStatus.ACTIVE, OrderStatus.TRIGGERED, OrderStatus.EXECUTING},
)
TERMINAL_STATUSES = frozenset(
    {OrderStatus.EXECUTED, OrderStatus.CANCELLED, OrderStatus.FAILED},
)


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def ensure_transition(order: Order, target: OrderStatus) -> None:
    """
    Raise if ``order`` may not move to ``target``.

    Moving out of a terminal state, or cancelling an order that already left
    ``active``, is a conflict with the current state. Anything else that is
    missing in the table is an illegal transition.
    """
    if target in ORDER_TRANSITIONS[order.status]:
        return
    if is_terminal(order.status) or target == OrderStatus.CANCELLED:
        raise ConflictingStateError(order.id, order.status.value, target.value)
    raise IllegalTransitionError(order.id, order.status.value, target.value)
