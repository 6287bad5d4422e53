"""Operator commands: refund an order, check the deployment, create tables, serve."""

import argparse
import asyncio
import logging
import sys

from sqlalchemy import inspect

from shopbot import stripe_service
from shopbot.bot import create_bot
from shopbot.config import Settings, get_settings
from shopbot.database import SessionLocal, dispose_db, engine, init_db
from shopbot.logging_setup import configure_logging
from shopbot.notifications import LoggingTransport
from shopbot.orders import find_order
from shopbot.services import build_services

logger = logging.getLogger(__name__)


async def refund_order(identifier: str, settings: Settings, session_factory=SessionLocal) -> int:
    bot = create_bot(settings) if settings.bot_token else None
    services = build_services(settings, session_factory, bot or LoggingTransport())
    try:
        async with session_factory() as db:
            order = await find_order(db, identifier)
        if order is None:
            print(f"Order not found: {identifier}", file=sys.stderr)
            return 1

        print(f"Processing refund for order #{order.id} ({order.external_id})")
        print(f"Amount: {order.amount} {order.currency}")
        print(f"Status: {order.status}")

        result = await services.refunds.create_refund(order.id)
        if result.success:
            print("✓ Refund successful!")
            print(f"Refund ID: {result.refund_id}")
            return 0
        print(f"✗ Refund failed: {result.error} ({result.error_kind.value})", file=sys.stderr)
        return 1
    except Exception as error:
        logger.exception("Refund of %s failed unexpectedly", identifier)
        print(f"Unexpected error: {error}", file=sys.stderr)
        return 1
    finally:
        if bot:
            await bot.session.close()


async def health_check(settings: Settings) -> int:
    checks = {}

    missing = Settings.missing()
    checks["env"] = not missing
    print("✅ Environment variables set" if not missing else f"❌ Missing variables: {', '.join(missing)}")

    try:
        async with engine.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
        checks["db"] = "orders" in tables
        print("✅ Database connected" if checks["db"] else "⚠️  Database connected, but no orders table (run init-db)")
    except Exception as error:
        checks["db"] = False
        print(f"❌ Database error: {error}")

    checks["stripe"] = False
    if settings.stripe_secret_key:
        try:
            await stripe_service.check_connection()
            checks["stripe"] = True
            print("✅ Stripe API reachable")
        except Exception as error:
            print(f"❌ Stripe error: {error}")
    else:
        print("⏭️  Stripe skipped (no STRIPE_SECRET_KEY)")

    checks["bot"] = False
    if settings.bot_token:
        bot = create_bot(settings)
        try:
            me = await bot.get_me()
            checks["bot"] = True
            print(f"✅ Telegram bot @{me.username}")
        except Exception as error:
            print(f"❌ Bot error: {error}")
        finally:
            await bot.session.close()
    else:
        print("⏭️  Bot skipped (no BOT_TOKEN)")

    passed = sum(checks.values())
    print(f"\nPassed: {passed}/{len(checks)}")
    return 0 if passed == len(checks) else 1


async def _run(coro) -> int:
    try:
        return await coro
    finally:
        await dispose_db()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="shopbot", description=__doc__)
    sub = parser.add_subparsers(dest="command", required=True)

    refund = sub.add_parser("refund", help="Refund an order by numeric id or external id")
    refund.add_argument("order", help="order id or external id")

    sub.add_parser("health", help="Check environment, database, Stripe and bot")
    sub.add_parser("init-db", help="Create database tables")

    serve = sub.add_parser("serve", help="Run the webhook server")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=3000)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging("shopbot-cli", settings.log_level)

    if args.command == "refund":
        return asyncio.run(_run(refund_order(args.order, settings)))
    if args.command == "health":
        return asyncio.run(_run(health_check(settings)))
    if args.command == "init-db":
        asyncio.run(_run(_init_db()))
        print("Tables created")
        return 0
    if args.command == "serve":
        import uvicorn

        uvicorn.run("shopbot.main:app", host=args.host, port=args.port)
        return 0
    return 1


async def _init_db() -> int:
    await init_db()
    return 0


if __name__ == "__main__":
    sys.exit(main())
