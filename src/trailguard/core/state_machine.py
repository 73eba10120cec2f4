# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

"""Lifecycle state machine of the engine (not to be confused with order states)."""

import asyncio
from enum import Enum, auto
from typing import Self


class States(Enum):
    """Represents the state of the engine"""

    INITIALIZING = auto()
    RUNNING = auto()
    PAUSED = auto()
    SHUTDOWN_REQUESTED = auto()
    ERROR = auto()


class StateMachine:
    """Manages state and state transitions of the engine"""

    def __init__(
        self: Self,
        initial_state: States = States.INITIALIZING,
    ) -> None:
        self._state: States = initial_state
        self._transitions = self._define_transitions()

    def _define_transitions(self: Self) -> dict[States, list[States]]:
        return {
            States.INITIALIZING: [
                States.RUNNING,
                States.SHUTDOWN_REQUESTED,
                States.ERROR,
            ],
            States.RUNNING: [
                States.PAUSED,
                States.ERROR,
                States.SHUTDOWN_REQUESTED,
            ],
            States.PAUSED: [
                States.RUNNING,
                States.ERROR,
                States.SHUTDOWN_REQUESTED,
            ],
            States.ERROR: [
                States.RUNNING,
                States.SHUTDOWN_REQUESTED,
                States.ERROR,
            ],
            States.SHUTDOWN_REQUESTED: [],
        }

    def transition_to(self: Self, new_state: States) -> None:
        """Attempt to transition to a new state"""
        if new_state == self._state:
            # Same-state transitions are no-ops
            return

        if new_state not in self._transitions.get(self._state, []):
            raise ValueError(
                f"Invalid state transition from {self._state} to {new_state}",
            )

        self._state = new_state

        if new_state in (States.SHUTDOWN_REQUESTED, States.ERROR) and hasattr(
            self,
            "_shutdown_event",
        ):
            self._shutdown_event.set()

    @property
    def state(self: Self) -> States:
        return self._state

    async def wait_for_shutdown(self: Self) -> None:
        """Wait until the engine is shutting down or in error"""
        if self._state in (States.SHUTDOWN_REQUESTED, States.ERROR):
            return

        if not hasattr(self, "_shutdown_event"):
            self._shutdown_event = asyncio.Event()

        await self._shutdown_event.wait()
