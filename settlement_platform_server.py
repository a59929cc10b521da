"""settlement_platform_server
============================
Mini-README: Entry point for running the creator settlement core. Creates the FastAPI
application, mounts the payout, admin and webhook routers, maps settlement errors to
JSON responses, and exposes CLI utilities for database initialisation and the
automatic payout run before starting an ASGI server with configurable host/port/log
level settings.
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import uvicorn

from settlement import configure_logging, get_logger, get_settings
from settlement.config import Settings
from settlement.database import create_engine_and_sessionmaker, init_db
from settlement.exceptions import SettlementError
from settlement.routers import admin as admin_router
from settlement.routers import payouts as payouts_router
from settlement.routers import webhooks as webhooks_router
from settlement.services import AsaasTransferGateway, PayoutLockRegistry, TransferGateway, build_services

LOGGER = get_logger(__name__)


def create_app(settings: Optional[Settings] = None, gateway: Optional[TransferGateway] = None) -> FastAPI:
    """Construct and configure the FastAPI application."""

    settings = settings or get_settings()
    app = FastAPI(title=settings.app_name)

    engine, session_maker = create_engine_and_sessionmaker(settings)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_maker = session_maker
    app.state.gateway = gateway or AsaasTransferGateway.from_settings(settings)
    app.state.payout_locks = PayoutLockRegistry()

    app.include_router(payouts_router.router)
    app.include_router(admin_router.router)
    app.include_router(webhooks_router.router)

    @app.exception_handler(SettlementError)
    async def settlement_error_handler(request: Request, exc: SettlementError) -> JSONResponse:
        if exc.status_code >= 500:
            LOGGER.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            LOGGER.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.kind.value, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.on_event("startup")
    async def ensure_database_schema() -> None:
        """Create tables on boot."""

        await init_db(engine)

    @app.on_event("shutdown")
    async def dispose_engine() -> None:
        await engine.dispose()

    @app.get("/healthz")
    async def healthcheck() -> dict[str, Any]:
        return {"status": "ok"}

    return app


def parse_args() -> argparse.Namespace:
    """Parse CLI arguments for running the server."""

    parser = argparse.ArgumentParser(description="Creator Settlement Server")
    parser.add_argument("--host", default=get_settings().default_host, help="Host to bind the server")
    parser.add_argument("--port", type=int, default=get_settings().default_port, help="Port to bind the server")
    parser.add_argument("--reload", action="store_true", help="Enable autoreload for development")
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["critical", "error", "warning", "info", "debug"],
        help="Logging level for Uvicorn and the settlement loggers",
    )
    parser.add_argument("--init-db", action="store_true", help="Initialise the database and exit")
    parser.add_argument(
        "--run-auto-payouts",
        action="store_true",
        help="Pay out the full balance of every eligible creator and exit",
    )
    return parser.parse_args()


async def initialise_database(settings: Settings) -> None:
    """Initialise database tables if they do not exist."""

    LOGGER.info("Initialising database...")
    engine, _ = create_engine_and_sessionmaker(settings)
    try:
        await init_db(engine)
    finally:
        await engine.dispose()
    LOGGER.info("Database initialisation complete")


async def run_automatic_payouts(settings: Settings) -> int:
    """Run one automatic payout pass outside the web server."""

    engine, session_maker = create_engine_and_sessionmaker(settings)
    gateway = AsaasTransferGateway.from_settings(settings)
    try:
        async with session_maker() as session:
            services = build_services(session, settings=settings, gateway=gateway, locks=PayoutLockRegistry())
            return await services.payouts.process_automatic_payouts()
    finally:
        await engine.dispose()


def main() -> None:
    """CLI entrypoint for running the ASGI server."""

    args = parse_args()
    configure_logging(args.log_level)
    settings = get_settings()
    performed_cli_action = False

    if args.init_db:
        asyncio.run(initialise_database(settings))
        performed_cli_action = True

    if args.run_auto_payouts:
        processed = asyncio.run(run_automatic_payouts(settings))
        LOGGER.info("Automatic payout run finished: %s payouts", processed)
        performed_cli_action = True

    if performed_cli_action:
        return

    uvicorn.run(
        "settlement_platform_server:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
