# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Self


class ISettlementClient(ABC):
    """Interface for the external settlement of triggered orders."""

    @abstractmethod
    def submit(
        self: Self,
        asset_id: str,
        amount: Decimal,
        execution_price: Decimal,
        user_address: str,
    ) -> str:
        """
        Submit the disposal of ``amount`` and return the settlement reference.

        Raises SettlementTransientError for failures worth retrying and
        SettlementTerminalError for rejections.
        """
