#!/usr/bin/env python3
"""
CTF events server: question catalog, events with frozen question snapshots,
answer scoring and leaderboards behind a JSON API and HTML pages.
"""

import argparse
import asyncio
import os
from pathlib import Path

from ctf_events.logging_config import configure_logging
from ctf_events.server import EventSystem


async def main():
    """Main function with command line interface."""

    parser = argparse.ArgumentParser(
        description="CTF Events Server with JSON API and web pages",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--web-port",
        type=int,
        default=int(os.getenv("WEB_PORT", "8081")),
        help="Web server port (env: WEB_PORT)",
    )
    parser.add_argument(
        "--db",
        default=os.getenv("DB_PATH", "ctf_events.db"),
        help="SQLite database file path (env: DB_PATH)",
    )
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "ctf_events.json"),
        help="Configuration file path (env: CONFIG_PATH)",
    )
    parser.add_argument(
        "--host",
        default=os.getenv("HOST", "0.0.0.0"),
        help="Host to bind the web server to (env: HOST)",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (env: LOG_LEVEL)",
    )

    args = parser.parse_args()
    logger = configure_logging(args.log_level)

    config_path = Path(args.config)

    if config_path.exists() and not config_path.is_file():
        logger.error("%s exists but is not a file", args.config)
        return

    system = EventSystem(
        web_port=args.web_port,
        db_path=args.db,
        config_path=args.config,
    )

    await system.init_db()
    await system.print_events_summary()

    await system.run(host=args.host)


def cli():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nServer interrupted")


if __name__ == "__main__":
    cli()
