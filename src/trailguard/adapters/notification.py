# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

from logging import getLogger
from typing import Self

import requests

from trailguard.interfaces import INotificationChannel

LOG = getLogger(__name__)


class TelegramNotificationChannelAdapter(INotificationChannel):
    """Telegram implementation of the notification channel."""

    def __init__(self: Self, bot_token: str, chat_id: str) -> None:
        self.__chat_id = chat_id
        self.__base_url = f"https://api.telegram.org/bot{bot_token}"

    def send(self: Self, message: str) -> bool:
        """Send a notification message through Telegram."""
        LOG.debug("Sending Telegram notification: %s", message)
        try:
            response = requests.post(
                f"{self.__base_url}/sendMessage",
                data={
                    "chat_id": self.__chat_id,
                    "text": message,
                    "parse_mode": "markdown",
                },
                timeout=10,
            )
        except requests.RequestException as exc:
            LOG.error("Failed to send Telegram notification: %s", exc)
            return False
        if response.status_code != 200:
            LOG.warning(
                "Telegram rejected the notification (HTTP %d)",
                response.status_code,
            )
            return False
        return True
