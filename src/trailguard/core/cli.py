# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

"""Command-line interface of the trailing stop engine"""

from decimal import Decimal, InvalidOperation
from logging import DEBUG, INFO, WARNING, basicConfig, getLogger
from typing import Any

from click import FLOAT, INT, STRING, ClickException, Context, echo, pass_context
from cloup import Choice, HelpFormatter, HelpTheme, Style, argument, group, option
from pydantic import ValidationError

from trailguard.exceptions import TrailGuardError
from trailguard.models.configuration import (
    DBConfigDTO,
    EngineConfigDTO,
    NotificationConfigDTO,
    PriceFeedConfigDTO,
    TelegramConfigDTO,
)
from trailguard.models.order import Order

FORMATTER_SETTINGS = HelpFormatter.settings(
    theme=HelpTheme(
        invoked_command=Style(fg="bright_yellow"),
        heading=Style(fg="bright_white", bold=True),
        constraint=Style(fg="magenta"),
        col1=Style(fg="bright_yellow"),
    ),
)


def print_version(ctx: Context, param: Any, value: Any) -> None:  # noqa: ANN401, ARG001
    """Prints the version of the package"""
    if not value or ctx.resilient_parsing:
        return
    from importlib.metadata import (  # noqa: PLC0415 # pylint: disable=import-outside-toplevel
        version,
    )

    echo(version("trailguard"))
    ctx.exit()


def ensure_larger_than_zero(
    ctx: Context,
    param: Any,  # noqa: ANN401
    value: Any,  # noqa: ANN401
) -> Any:  # noqa: ANN401
    """Ensure the value is larger than 0"""
    if value is not None and value <= 0:
        ctx.fail(f"Value for option '{param.name}' must be larger than 0")
    return value


def parse_fallback_prices(
    ctx: Context,
    param: Any,  # noqa: ANN401
    value: tuple[str, ...],
) -> dict[str, Decimal]:
    """Parse repeated ASSET_ID=PRICE options"""
    prices = {}
    for item in value:
        asset_id, _, price = item.partition("=")
        try:
            prices[asset_id] = Decimal(price)
        except InvalidOperation:
            ctx.fail(f"Invalid value for option '{param.name}': {item}")
    return prices


def format_order(order: Order) -> str:
    line = (
        f"{order.id}  {order.status.value:<9}  {order.asset_symbol or order.asset_id:<6}"
        f"  amount={order.amount}  price={order.current_price}"
        f"  stop={order.stop_price}  high={order.high_water_mark}"
    )
    if order.take_profit_price is not None:
        line += f"  take_profit={order.take_profit_price}"
    if order.settlement_ref:
        line += f"  ref={order.settlement_ref}"
    if order.failure_reason:
        line += f"  reason={order.failure_reason}"
    return line


def db_config(ctx: Context) -> DBConfigDTO:
    if (config := ctx.obj["db_config"]) is None:
        ctx.fail("Either --sqlite-file, --in-memory or the --db-* options are required")
    return config


def order_service(ctx: Context) -> Any:  # noqa: ANN401
    """Build the order service for the one-shot commands"""
    # pylint: disable=import-outside-toplevel
    from trailguard.adapters.price_sources import create_price_sources  # noqa: PLC0415
    from trailguard.core.event_bus import NOTIFICATION, ORDER_EVENT, EventBus  # noqa: PLC0415
    from trailguard.infrastructure.database import DBConnect, OrderStore  # noqa: PLC0415
    from trailguard.services.notification_service import (  # noqa: PLC0415
        NotificationService,
    )
    from trailguard.services.order_service import OrderService  # noqa: PLC0415
    from trailguard.services.price_feed import PriceFeedAggregator  # noqa: PLC0415

    db = DBConnect(db_config(ctx))
    store = OrderStore(db=db)
    db.init_db()
    ctx.call_on_close(db.close)

    event_bus = EventBus()
    notification_service = NotificationService(ctx.obj["notification_config"])
    event_bus.subscribe(ORDER_EVENT, notification_service.on_order_event)
    event_bus.subscribe(NOTIFICATION, notification_service.on_notification)

    price_feed_config = PriceFeedConfigDTO()
    return OrderService(
        store=store,
        price_feed=PriceFeedAggregator(
            config=price_feed_config,
            sources=create_price_sources(
                {name for names in price_feed_config.sources.values() for name in names},
            ),
        ),
        event_bus=event_bus,
    )


@group(
    context_settings={
        "auto_envvar_prefix": "TRAILGUARD",
        "help_option_names": ["-h", "--help"],
    },
    formatter_settings=FORMATTER_SETTINGS,
    no_args_is_help=True,
)
@option(
    "--version",
    is_flag=True,
    callback=print_version,
    expose_value=False,
    is_eager=True,
)
@option(
    "-v",
    "--verbose",
    count=True,
    help="Increase the verbosity of output. Use -vv for even more verbosity.",
)
@option(
    "--sqlite-file",
    type=STRING,
    help="SQLite file to use as database instead of PostgreSQL.",
)
@option(
    "--in-memory",
    is_flag=True,
    default=False,
    help="Use an in-memory database (orders are lost on exit).",
)
@option("--db-user", type=STRING, help="PostgreSQL DB user")
@option("--db-password", type=STRING, help="PostgreSQL DB password")
@option("--db-name", type=STRING, default="trailguard", help="PostgreSQL DB name")
@option("--db-host", type=STRING, default="postgresql", help="PostgreSQL DB host")
@option("--db-port", type=INT, default=5432, help="PostgreSQL DB port")
@option("--telegram-token", type=STRING, help="The telegram token to use.")
@option("--telegram-chat-id", type=STRING, help="The telegram chat ID to use.")
@pass_context
def cli(ctx: Context, **kwargs: Any) -> None:  # noqa: ANN401
    """
    Trailing stop-loss monitoring and execution engine
    """
    ctx.ensure_object(dict)

    verbosity = kwargs["verbose"]
    basicConfig(
        format="%(asctime)s %(levelname)8s | %(message)s",
        datefmt="%Y/%m/%d %H:%M:%S",
        level=INFO if verbosity == 0 else DEBUG,
    )

    if verbosity > 1:
        getLogger("requests").setLevel(DEBUG)
        getLogger("urllib3").setLevel(DEBUG)
        getLogger("sqlalchemy.engine").setLevel(INFO)
    else:
        getLogger("requests").setLevel(WARNING)
        getLogger("urllib3").setLevel(WARNING)
        getLogger("sqlalchemy").setLevel(WARNING)

    try:
        ctx.obj["db_config"] = None
        if kwargs["in_memory"] or kwargs["sqlite_file"] or kwargs["db_user"]:
            ctx.obj["db_config"] = DBConfigDTO(
                sqlite_file=":memory:" if kwargs["in_memory"] else kwargs["sqlite_file"],
                user=kwargs["db_user"],
                password=kwargs["db_password"],
                host=kwargs["db_host"],
                port=kwargs["db_port"],
                database=kwargs["db_name"],
            )
        ctx.obj["notification_config"] = NotificationConfigDTO(
            telegram=TelegramConfigDTO(
                token=kwargs["telegram_token"],
                chat_id=kwargs["telegram_chat_id"],
            ),
        )
    except ValidationError as exc:
        raise ClickException(str(exc)) from exc


@cli.command(
    context_settings={
        "auto_envvar_prefix": "TRAILGUARD_RUN",
        "help_option_names": ["-h", "--help"],
    },
    formatter_settings=FORMATTER_SETTINGS,
)
@option("--name", type=STRING, default="trailguard", help="The name of the instance.")
@option(
    "--interval",
    type=FLOAT,
    default=10.0,
    show_default=True,
    callback=ensure_larger_than_zero,
    help="Seconds between two ticks of the monitor loop (5-300).",
)
@option(
    "--max-workers",
    type=INT,
    default=8,
    show_default=True,
    callback=ensure_larger_than_zero,
    help="Concurrent price fetches and settlements per tick.",
)
@option(
    "--max-price-age",
    type=FLOAT,
    default=120.0,
    show_default=True,
    callback=ensure_larger_than_zero,
    help="Older prices (seconds) are not used to evaluate orders.",
)
@option(
    "--settlement-url",
    type=STRING,
    help="Base URL of the settlement gateway.",
)
@option(
    "--settlement-token",
    type=STRING,
    help="Bearer token of the settlement gateway.",
)
@option(
    "--settlement-max-retries",
    type=INT,
    default=3,
    show_default=True,
    help="Retries of transient settlement failures.",
)
@option(
    "--settlement-backoff",
    type=FLOAT,
    default=1.0,
    show_default=True,
    help="Base delay in seconds between settlement retries.",
)
@option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Enable dry-run mode which does not settle orders.",
)
@option(
    "--metrics-port",
    type=INT,
    callback=ensure_larger_than_zero,
    help="Expose Prometheus metrics on this port.",
)
@option(
    "--cache-ttl",
    type=FLOAT,
    default=30.0,
    show_default=True,
    callback=ensure_larger_than_zero,
    help="Seconds a fetched price is reused.",
)
@option(
    "--stale-ceiling",
    type=FLOAT,
    default=1800.0,
    show_default=True,
    callback=ensure_larger_than_zero,
    help="Max age in seconds of a cached price used when all sources fail.",
)
@option(
    "--request-timeout",
    type=FLOAT,
    default=5.0,
    show_default=True,
    callback=ensure_larger_than_zero,
    help="Timeout in seconds of a single price request.",
)
@option(
    "--fallback-price",
    "fallback_prices",
    type=STRING,
    multiple=True,
    callback=parse_fallback_prices,
    help="Last-resort price as ASSET_ID=PRICE, tagged as 'fallback'.",
)
@pass_context
def run(ctx: Context, **kwargs: Any) -> None:  # noqa: ANN401
    """Run the trailing stop engine"""
    # pylint: disable=import-outside-toplevel
    import asyncio  # noqa: PLC0415

    from trailguard.core.engine import Engine  # noqa: PLC0415

    try:
        engine_config = EngineConfigDTO(
            name=kwargs["name"],
            interval=kwargs["interval"],
            max_workers=kwargs["max_workers"],
            max_price_age=kwargs["max_price_age"],
            settlement_max_retries=kwargs["settlement_max_retries"],
            settlement_backoff=kwargs["settlement_backoff"],
            dry_run=kwargs["dry_run"],
            settlement_url=kwargs["settlement_url"],
            settlement_token=kwargs["settlement_token"],
            metrics_port=kwargs["metrics_port"],
        )
        price_feed_config = PriceFeedConfigDTO(
            cache_ttl=kwargs["cache_ttl"],
            stale_ceiling=kwargs["stale_ceiling"],
            request_timeout=kwargs["request_timeout"],
            fallback_prices=kwargs["fallback_prices"],
        )
    except ValidationError as exc:
        raise ClickException(str(exc)) from exc

    config = db_config(ctx)

    async def main() -> None:
        engine = Engine(
            engine_config=engine_config,
            db_config=config,
            price_feed_config=price_feed_config,
            notification_config=ctx.obj["notification_config"],
        )
        await engine.run()

    asyncio.run(main())


@cli.command(
    context_settings={
        "auto_envvar_prefix": "TRAILGUARD_CREATE",
        "help_option_names": ["-h", "--help"],
    },
    formatter_settings=FORMATTER_SETTINGS,
)
@option("--asset-id", type=STRING, default="0", show_default=True, help="Asset to track.")
@option("--amount", type=STRING, required=True, help="Quantity to sell on trigger.")
@option("--trail-distance", type=STRING, required=True, help="Distance to the high.")
@option(
    "--trail-distance-type",
    type=Choice(choices=("percentage", "absolute"), case_sensitive=True),
    default="percentage",
    show_default=True,
    help="Whether the trail distance is a percentage or a price offset.",
)
@option(
    "--entry-price",
    type=STRING,
    help="Entry price, the current price is used if omitted.",
)
@option("--user-address", type=STRING, required=True, help="Owner of the order.")
@option("--take-profit-price", type=STRING, help="Optional take-profit level.")
@pass_context
def create(ctx: Context, **kwargs: Any) -> None:  # noqa: ANN401
    """Create a new trailing stop order"""
    from trailguard.models.order import CreateOrderRequest  # noqa: PLC0415

    try:
        order = order_service(ctx).create_order(CreateOrderRequest(**kwargs))
    except (ValidationError, ValueError, TrailGuardError) as exc:
        raise ClickException(str(exc)) from exc
    echo(order.model_dump_json(indent=2))


@cli.command(
    context_settings={
        "auto_envvar_prefix": "TRAILGUARD_CANCEL",
        "help_option_names": ["-h", "--help"],
    },
    formatter_settings=FORMATTER_SETTINGS,
)
@argument("order_id", type=STRING)
@option("--user-address", type=STRING, required=True, help="Owner of the order.")
@pass_context
def cancel(ctx: Context, order_id: str, user_address: str) -> None:
    """Cancel an active order"""
    try:
        order = order_service(ctx).cancel_order(order_id, user_address)
    except TrailGuardError as exc:
        raise ClickException(str(exc)) from exc
    echo(format_order(order))


@cli.command(
    name="list",
    context_settings={
        "auto_envvar_prefix": "TRAILGUARD_LIST",
        "help_option_names": ["-h", "--help"],
    },
    formatter_settings=FORMATTER_SETTINGS,
)
@option("--user-address", type=STRING, required=True, help="Owner of the orders.")
@option(
    "--status",
    type=Choice(choices=("active", "terminal", "all"), case_sensitive=True),
    default="active",
    show_default=True,
    help="Open orders (active and in execution), finished orders or all.",
)
@pass_context
def list_orders(ctx: Context, user_address: str, status: str) -> None:
    """List the orders of a user"""
    if not (orders := order_service(ctx).list_orders(user_address, scope=status)):
        echo("No orders found.")
        return
    for order in orders:
        echo(format_order(order))


@cli.command(
    context_settings={
        "auto_envvar_prefix": "TRAILGUARD_STATS",
        "help_option_names": ["-h", "--help"],
    },
    formatter_settings=FORMATTER_SETTINGS,
)
@option("--user-address", type=STRING, help="Show the statistics of this user.")
@pass_context
def stats(ctx: Context, user_address: str | None) -> None:
    """Show platform metrics or user statistics"""
    service = order_service(ctx)
    result = (
        service.get_user_stats(user_address)
        if user_address
        else service.get_platform_metrics()
    )
    echo(result.model_dump_json(indent=2))


@cli.command(
    context_settings={
        "auto_envvar_prefix": "TRAILGUARD_RESOLVE",
        "help_option_names": ["-h", "--help"],
    },
    formatter_settings=FORMATTER_SETTINGS,
)
@argument("order_id", type=STRING)
@option("--settlement-ref", type=STRING, help="Reference of the completed settlement.")
@option("--failed", "failure_reason", type=STRING, help="Mark as failed with this reason.")
@pass_context
def resolve(
    ctx: Context,
    order_id: str,
    settlement_ref: str | None,
    failure_reason: str | None,
) -> None:
    """Record the outcome of an order stuck in execution"""
    try:
        order = order_service(ctx).resolve_in_flight(
            order_id,
            settlement_ref=settlement_ref,
            failure_reason=failure_reason,
        )
    except (ValueError, TrailGuardError) as exc:
        raise ClickException(str(exc)) from exc
    echo(format_order(order))


@cli.command(
    context_settings={
        "auto_envvar_prefix": "TRAILGUARD_RETRY",
        "help_option_names": ["-h", "--help"],
    },
    formatter_settings=FORMATTER_SETTINGS,
)
@argument("order_id", type=STRING)
@option("--user-address", type=STRING, required=True, help="Owner of the order.")
@pass_context
def retry(ctx: Context, order_id: str, user_address: str) -> None:
    """Create a new order from a failed one"""
    try:
        order = order_service(ctx).retry_failed(order_id, user_address)
    except (ValidationError, ValueError, TrailGuardError) as exc:
        raise ClickException(str(exc)) from exc
    echo(format_order(order))
