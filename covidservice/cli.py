"""
Command line interface for the COVID-19 statistics store.

Usage:
    covidservice import
    covidservice query DEU [--since 2020-12-01]
    covidservice serve [--host 0.0.0.0] [--port 8000]
    covidservice help

    # Use another database file or feed:
    COVID_DB_PATH=/tmp/covid.db COVID_ECDC_URL=http://localhost:8080/ecdc.json \
        covidservice import
"""

import argparse
import asyncio
import sys
from datetime import date

import httpx
import structlog

from covidservice.app.config import get_settings
from covidservice.app.database import make_engine
from covidservice.app.errors import CovidServiceError
from covidservice.app.logging import configure_logging
from covidservice.app.services.query import query
from covidservice.app.store import CaseStore
from covidservice.ingestion.ecdc import import_from_ecdc
from covidservice.ingestion.scheduler import import_policy

logger = structlog.get_logger()

COMMANDS = {
    "import": "Import the most recent data",
    "query": "Query country data",
    "serve": "Run the HTTP API",
    "help": "Print help",
}


async def _open_store(settings) -> CaseStore:
    store = CaseStore(make_engine(settings.database_url), buffer_size=settings.query_buffer_size)
    try:
        await store.initialize()
    except BaseException:
        await store.engine.dispose()
        raise
    return store


async def import_command(settings, args, out) -> int:
    print(f"Importing from {settings.covid_ecdc_url} into {settings.storage_location}", file=out)
    store = await _open_store(settings)
    try:
        result = await import_from_ecdc(store, settings.covid_ecdc_url, import_policy(settings))
    finally:
        await store.engine.dispose()
    print(
        f"Imported {result.imported} new records for {len(result.countries)} countries, "
        f"skipped {result.skipped} known records.",
        file=out,
    )
    return 0


async def query_command(settings, args, out) -> int:
    store = await _open_store(settings)
    try:
        print(f"{'Country':<15} {'Date':<15} {'Cumulative':<15} {'New cases':<10} New deaths", file=out)
        async with query(store, args.country, args.since) as stream:
            async for result in stream:
                if result.error is not None:
                    raise result.error
                r = result.record
                print(
                    f"{r.country.name or r.country.code:<15} {r.date.isoformat():<15} "
                    f"{r.cumulative:<15f} {r.cases:<10d} {r.deaths}",
                    file=out,
                )
    finally:
        await store.engine.dispose()
    print(f"Data source:\t{settings.covid_ecdc_url}", file=out)
    return 0


def serve_command(settings, args, out) -> int:
    import uvicorn

    uvicorn.run(
        "covidservice.app.main:app",
        host=args.host or settings.app_host,
        port=args.port or settings.app_port,
        log_level=settings.log_level,
    )
    return 0


def help_command(settings, args, out) -> int:
    print(f"Database:\t{settings.storage_location}", file=out)
    print(f"Data source:\t{settings.covid_ecdc_url}", file=out)
    print("Command list:", file=out)
    for name, description in COMMANDS.items():
        print(f"{name}\t{description}", file=out)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="covidservice",
        description="Import and query daily COVID-19 statistics per country",
    )
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("import", help=COMMANDS["import"])

    query_parser = sub.add_parser("query", help=COMMANDS["query"])
    query_parser.add_argument(
        "country",
        help="Geo id (DE), country code (DEU) or country name (Germany)",
    )
    query_parser.add_argument(
        "--since", type=date.fromisoformat, default=None,
        help="First day to show, YYYY-MM-DD (default: everything)",
    )

    serve_parser = sub.add_parser("serve", help=COMMANDS["serve"])
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)

    sub.add_parser("help", help=COMMANDS["help"])
    return parser


def main(argv: list[str] | None = None, out=None) -> int:
    out = out or sys.stdout
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = get_settings()
        configure_logging(settings.log_level, settings.log_json)
        if args.command == "import":
            return asyncio.run(import_command(settings, args, out))
        if args.command == "query":
            return asyncio.run(query_command(settings, args, out))
        if args.command == "serve":
            return serve_command(settings, args, out)
        if args.command == "help":
            return help_command(settings, args, out)
        print("No command supplied", file=out)
        parser.print_help(out)
        return 1
    except (CovidServiceError, httpx.HTTPError, ValueError) as e:
        logger.error("Command failed", command=args.command, error=str(e))
        print(e, file=out)
        return 1


if __name__ == "__main__":
    sys.exit(main())
