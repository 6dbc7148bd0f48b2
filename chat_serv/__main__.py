"""
Production entry point for the chat server.
"""

import argparse
import asyncio
import sys
import logging

import uvicorn

from chat_serv.app import Application
from chat_serv.config import settings


async def migrate():
    """Apply SQL migrations and exit."""

    app = Application()

    try:
        await app.db.safely_connect(check_schema=False)
        version = await app.db.apply_migrations()

        app.logger.info(f"Database schema is at version {version}")

    finally:
        await app.db.disconnect()


async def main():
    """Main entry point."""

    app = Application()
    api = app.create_api()

    server = uvicorn.Server(uvicorn.Config(
        api,
        host=settings.host,
        port=settings.port,
        log_config=None,
        ws="websockets",
    ))

    app.logger.info(f"Starting HTTP server on {settings.host}:{settings.port}...")

    await server.serve()


if __name__ == "__main__":
    logger = logging.getLogger("app-starter")

    parser = argparse.ArgumentParser(prog="chat_serv")
    parser.add_argument("--migrate", action="store_true", help="apply database migrations and exit")
    args = parser.parse_args()

    try:
        asyncio.run(migrate() if args.migrate else main())

    except KeyboardInterrupt:
        pass

    except Exception:
        if settings.showing_tracebacks:
            import traceback
            traceback.print_exc()
        else:
            logger.critical(
                "Critical unexpected error. Enable the 'showing_tracebacks' parameter in your .env file for debugging.")
        sys.exit(1)
