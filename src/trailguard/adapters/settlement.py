# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

from decimal import Decimal
from logging import getLogger
from typing import Self
from uuid import uuid4

import requests

from trailguard.exceptions import SettlementTerminalError, SettlementTransientError
from trailguard.interfaces import ISettlementClient

LOG = getLogger(__name__)


class HTTPSettlementClientAdapter(ISettlementClient):
    """
    Submits settlements to an HTTP gateway that signs and broadcasts the
    transaction and answers with ``{"settlement_ref": "<transaction id>"}``.

    Timeouts, connection problems, HTTP 429 and HTTP 5xx are transient, any
    other HTTP error is a rejection.
    """

    def __init__(
        self: Self,
        url: str,
        token: str | None = None,
        timeout: float = 30,
    ) -> None:
        self.__url = url.rstrip("/")
        self.__timeout = timeout
        self.__headers = {"Accept": "application/json"}
        if token:
            self.__headers["Authorization"] = f"Bearer {token}"

    def submit(
        self: Self,
        asset_id: str,
        amount: Decimal,
        execution_price: Decimal,
        user_address: str,
    ) -> str:
        LOG.info(
            "Submitting settlement of %s units of asset '%s' at %s for %s...",
            amount,
            asset_id,
            execution_price,
            user_address,
        )
        try:
            response = requests.post(
                f"{self.__url}/settlements",
                json={
                    "asset_id": asset_id,
                    "amount": str(amount),
                    "execution_price": str(execution_price),
                    "user_address": user_address,
                },
                headers=self.__headers,
                timeout=self.__timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise SettlementTransientError(f"Settlement gateway unreachable: {exc}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise SettlementTransientError(
                f"Settlement gateway unavailable (HTTP {response.status_code})",
            )
        if response.status_code >= 400:
            raise SettlementTerminalError(
                f"Settlement rejected (HTTP {response.status_code}): {response.text}",
            )

        try:
            settlement_ref = response.json()["settlement_ref"]
        except (ValueError, KeyError, TypeError) as exc:
            raise SettlementTerminalError(
                "Settlement gateway answered without a settlement reference",
            ) from exc
        if not settlement_ref:
            raise SettlementTerminalError("Settlement gateway returned an empty reference")
        return str(settlement_ref)


class DryRunSettlementClientAdapter(ISettlementClient):
    """Settles nothing, returns references marked as dry-run."""

    def submit(
        self: Self,
        asset_id: str,
        amount: Decimal,
        execution_price: Decimal,
        user_address: str,
    ) -> str:
        LOG.info(
            "Dry run, not settling %s units of asset '%s' at %s for %s.",
            amount,
            asset_id,
            execution_price,
            user_address,
        )
        return f"dry-run-{uuid4().hex}"
