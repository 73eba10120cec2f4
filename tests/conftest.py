# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

from typing import Any, Callable, Generator

import pytest

from trailguard.infrastructure.database import DBConnect, OrderStore
from trailguard.models.configuration import DBConfigDTO
from trailguard.models.order import Order

from .helper import FakeClock, build_order


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="session")
def db_config() -> DBConfigDTO:
    return DBConfigDTO(sqlite_file=":memory:")


@pytest.fixture
def db_connect(db_config: DBConfigDTO) -> Generator:
    """DBConnect instance with an in-memory SQLite database"""
    conn = DBConnect(db_config)
    yield conn
    conn.close()


@pytest.fixture
def store(db_connect: DBConnect, clock: FakeClock) -> OrderStore:
    order_store = OrderStore(db=db_connect, clock=clock)
    db_connect.init_db()
    return order_store


@pytest.fixture
def add_order(store: OrderStore) -> Callable[..., Order]:
    """Creates an order and persists it"""

    def _add(**overrides: Any) -> Order:
        return store.add(build_order(**overrides))

    return _add
