# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2024 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

"""
Database connection and the tables used by the engine.

The order store is the single place where orders are written. Every write is
guarded by the version the writer read: ``UPDATE ... WHERE id = ? AND version
= ?``. If no row matches, another writer came first and the caller receives a
``StaleVersionError``.
"""

from collections import defaultdict
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from logging import getLogger
from typing import Any, Callable, Iterable, Self

from sqlalchemy import (
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    asc,
    create_engine,
    desc,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Result
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.types import TypeDecorator

from trailguard.core.clock import utc_now
from trailguard.core.order_state import TERMINAL_STATUSES, ensure_transition
from trailguard.exceptions import (
    ConflictingStateError,
    OrderNotFoundError,
    StaleVersionError,
)
from trailguard.models.configuration import DBConfigDTO
from trailguard.models.order import Order, OrderStatus

LOG = getLogger(__name__)

class DBConnect:
    """Manages the connection to a PostgreSQL or SQLite database."""

    def __init__(self: Self, config: DBConfigDTO) -> None:
        LOG.info("Connecting to the database...")
        if config.sqlite_file:
            engine_url = f"sqlite:///{config.sqlite_file}"
        else:
            engine_url = (
                f"postgresql://{config.user}:{config.password}"
                f"@{config.host}:{config.port}/{config.database}"
            )

        self.engine = create_engine(engine_url)
        self.session = sessionmaker(bind=self.engine)()
        self.metadata = MetaData()

    def init_db(self: Self) -> None:
        """Create all tables registered on the metadata."""
        LOG.info("Initializing the database...")
        self.metadata.create_all(self.engine)

    def _where(
        self: Self,
        table: Table,
        filters: dict[str, Any] | None = None,
    ) -> list[ColumnElement]:
        clauses = []
        for column, value in (filters or {}).items():
            if isinstance(value, (list, tuple, set, frozenset)):
                clauses.append(table.c[column].in_(list(value)))
            else:
                clauses.append(table.c[column] == value)
        return clauses

    def _commit(self: Self, statement: Any) -> Result:
        """Execute a writing statement, roll back if it fails."""
        try:
            result = self.session.execute(statement)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return result

    def add_row(self: Self, table: Table, **kwargs: Any) -> None:
        """Insert a row into a specific table."""
        self._commit(insert(table).values(**kwargs))

    def get_rows(
        self: Self,
        table: Table,
        filters: dict[str, Any] | None = None,
        order_by: tuple[str, str] | None = None,
    ) -> Result:
        """
        Fetch rows from a specific table. Iterable filter values are matched
        via IN, ``order_by`` is a tuple of (column, "asc"|"desc").
        """
        query = select(table).where(*self._where(table, filters))
        if order_by:
            column, direction = order_by
            query = query.order_by(
                desc(table.c[column]) if direction == "desc" else asc(table.c[column]),
            )
        return self.session.execute(query)

    def update_row(
        self: Self,
        table: Table,
        filters: dict[str, Any],
        updates: dict[str, Any],
    ) -> int:
        """Update rows matching all filters and return the affected row count."""
        result = self._commit(
            update(table).where(*self._where(table, filters)).values(**updates),
        )
        return result.rowcount

    def count(self: Self, table: Table, filters: dict[str, Any] | None = None) -> int:
        return self.session.execute(
            select(func.count()).select_from(table).where(*self._where(table, filters)),
        ).scalar_one()

    def close(self: Self) -> None:
        """Close the session and release all connections."""
        self.session.close()
        self.engine.dispose()


# Fields that are set once at creation
IMMUTABLE_FIELDS = frozenset(
    {
        "id",
        "user_address",
        "asset_id",
        "asset_symbol",
        "asset_name",
        "order_type",
        "amount",
        "entry_price",
        "trail_distance",
        "trail_distance_type",
        "take_profit_price",
        "created_at",
    },
)


class DecimalString(TypeDecorator):
    """Stores decimals as text to keep them exact on every backend."""

    impl = String
    cache_ok = True

    def process_bind_param(self, value: Decimal | None, dialect: Any) -> str | None:
        return None if value is None else str(value)

    def process_result_value(self, value: str | None, dialect: Any) -> Decimal | None:
        return None if value is None else Decimal(value)


class UTCDateTime(TypeDecorator):
    """Stores timezone-aware datetimes as naive UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Naive datetimes are not accepted")
        return value.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(
        self,
        value: datetime | None,
        dialect: Any,
    ) -> datetime | None:
        return None if value is None else value.replace(tzinfo=UTC)


class OrderStore:
    """Table of trailing stop orders with a per-user index"""

    def __init__(
        self: Self,
        db: DBConnect,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        LOG.debug("Initializing the 'trailing_orders' table...")
        self.__db = db
        self.__clock = clock
        self.__table = Table(
            "trailing_orders",
            self.__db.metadata,
            Column("id", String(64), primary_key=True),
            Column("user_address", String(128), nullable=False),
            Column("asset_id", String(64), nullable=False),
            Column("asset_symbol", String(32), nullable=False, default=""),
            Column("asset_name", String(128), nullable=False, default=""),
            Column("order_type", String(16), nullable=False),
            Column("amount", DecimalString(80), nullable=False),
            Column("entry_price", DecimalString(80), nullable=False),
            Column("high_water_mark", DecimalString(80), nullable=False),
            Column("trail_distance", DecimalString(80), nullable=False),
            Column("trail_distance_type", String(16), nullable=False),
            Column("stop_price", DecimalString(80), nullable=False),
            Column("take_profit_price", DecimalString(80), nullable=True),
            Column("status", String(16), nullable=False),
            Column("current_price", DecimalString(80), nullable=False),
            Column("pnl", DecimalString(80), nullable=False),
            Column("pnl_pct", DecimalString(80), nullable=False),
            Column("trigger_reason", String(16), nullable=True),
            Column("created_at", UTCDateTime, nullable=False),
            Column("updated_at", UTCDateTime, nullable=False),
            Column("execution_price", DecimalString(80), nullable=True),
            Column("execution_time", UTCDateTime, nullable=True),
            Column("settlement_ref", String(256), nullable=True),
            Column("failure_reason", Text, nullable=True),
            Column("execution_attempts", Integer, nullable=False, default=0),
            Column("version", Integer, nullable=False),
            Index("ix_trailing_orders_user_address", "user_address"),
            Index("ix_trailing_orders_status_asset", "status", "asset_id"),
        )

    @staticmethod
    def __to_row(values: dict[str, Any]) -> dict[str, Any]:
        return {
            key: value.value if isinstance(value, Enum) else value
            for key, value in values.items()
        }

    def __to_orders(self: Self, result: Any) -> list[Order]:
        return [Order.model_validate(dict(row)) for row in result.mappings()]

    # == Reads ==================================================================

    def get(self: Self, order_id: str) -> Order:
        """Returns the order or raises OrderNotFoundError"""
        if orders := self.__to_orders(
            self.__db.get_rows(self.__table, filters={"id": order_id}),
        ):
            return orders[0]
        raise OrderNotFoundError(order_id)

    def get_orders(
        self: Self,
        filters: dict[str, Any] | None = None,
        order_by: tuple[str, str] | None = ("created_at", "asc"),
    ) -> list[Order]:
        """Returns the orders matching all filters"""
        return self.__to_orders(
            self.__db.get_rows(
                self.__table,
                filters=filters,
                order_by=order_by,
            ),
        )

    def get_user_orders(
        self: Self,
        user_address: str,
        statuses: Iterable[OrderStatus] | None = None,
    ) -> list[Order]:
        """Returns the orders of a user, optionally limited to some states"""
        filters: dict[str, Any] = {"user_address": user_address}
        if statuses is not None:
            filters["status"] = [status.value for status in statuses]
        return self.get_orders(filters=filters)

    def get_by_status(self: Self, *statuses: OrderStatus) -> list[Order]:
        return self.get_orders(filters={"status": [s.value for s in statuses]})

    def get_active_by_asset(self: Self) -> dict[str, list[Order]]:
        """Returns all active orders grouped by their asset"""
        grouped: dict[str, list[Order]] = defaultdict(list)
        for order in self.get_by_status(OrderStatus.ACTIVE):
            grouped[order.asset_id].append(order)
        return dict(grouped)

    def count(self: Self, filters: dict[str, Any] | None = None) -> int:
        return self.__db.count(self.__table, filters=filters)

    # == Writes =================================================================

    def add(self: Self, order: Order) -> Order:
        """Insert a new order, stamped with version 1"""
        now = self.__clock()
        order = order.model_copy(update={"version": 1, "updated_at": now})
        LOG.debug("Adding order '%s' to the store...", order.id)
        self.__db.add_row(self.__table, **self.__to_row(order.model_dump()))
        return order

    def update(self: Self, order: Order) -> Order:
        """
        Persist the mutable fields of ``order`` (its status excluded) if the
        stored version still equals ``order.version``.
        """
        if order.status in TERMINAL_STATUSES:
            raise ConflictingStateError(order.id, order.status.value, "update")
        changes = order.model_dump(exclude=IMMUTABLE_FIELDS | {"status", "version"})
        return self.__write(order, changes)

    def transition(
        self: Self,
        order: Order,
        target: OrderStatus,
        **changes: Any,
    ) -> Order:
        """
        Move ``order`` to ``target`` and persist ``changes`` in the same
        guarded write. Raises ConflictingStateError for disallowed transitions
        and StaleVersionError if another writer came first.
        """
        ensure_transition(order, target)
        if forbidden := IMMUTABLE_FIELDS.intersection(changes):
            raise ValueError(f"Immutable fields cannot be changed: {sorted(forbidden)}")
        return self.__write(order, {**changes, "status": target})

    def __write(self: Self, order: Order, changes: dict[str, Any]) -> Order:
        values = {
            **changes,
            "version": order.version + 1,
            "updated_at": self.__clock(),
        }
        if (
            self.__db.update_row(
                self.__table,
                filters={"id": order.id, "version": order.version},
                updates=self.__to_row(values),
            )
            == 0
        ):
            if self.count(filters={"id": order.id}) == 0:
                raise OrderNotFoundError(order.id)
            LOG.debug(
                "Lost optimistic lock on order '%s' (version %d).",
                order.id,
                order.version,
            )
            raise StaleVersionError(order.id, order.version)
        return order.model_copy(update=values)
