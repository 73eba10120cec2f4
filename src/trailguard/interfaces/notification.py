# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

from abc import ABC, abstractmethod
from typing import Self


class INotificationChannel(ABC):
    """Interface for notification channels."""

    @abstractmethod
    def send(self: Self, message: str) -> bool:
        """Send a notification message through this channel."""
