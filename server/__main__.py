"""CrawlSearch command line interface.

    crawlsearch serve [--host HOST] [--port PORT]
    crawlsearch crawl URL [URL ...] [--max-depth N]
    crawlsearch init-index
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from config.settings import Settings
from indexer.client import IndexClient
from indexer.errors import IndexEngineError
from observability.logging import setup_logging
from pipelines.crawler import CrawlStatus, crawl_urls

logger = logging.getLogger(__name__)


async def run_crawl(settings: Settings, urls: List[str], max_depth: Optional[int]) -> int:
    async with IndexClient(settings.index) as client:
        job = await crawl_urls(urls, client, max_depth=max_depth, settings=settings.crawler)
    print(json.dumps(job.summary(), indent=2))
    return 0 if job.status == CrawlStatus.COMPLETED else 1


async def run_init_index(settings: Settings) -> int:
    async with IndexClient(settings.index) as client:
        try:
            await client.ensure_index()
        except IndexEngineError as e:
            logger.error(f"Failed to initialize index: {e.message}")
            return 1
    return 0


def serve(settings: Settings, host: Optional[str], port: Optional[int]) -> int:
    import uvicorn
    from server.api import create_app

    app = create_app(settings)
    uvicorn.run(
        app,
        host=host or settings.api.host,
        port=port or settings.api.port,
        log_config=None
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="crawlsearch", description="CrawlSearch crawler and search API")
    parser.add_argument("--config", help="YAML settings file (overrides CRAWLSEARCH_CONFIG)")
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)")
    parser.add_argument("--log-json", action="store_true", help="Emit JSON log lines")

    commands = parser.add_subparsers(dest="command", required=True)

    serve_parser = commands.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", help="Bind address")
    serve_parser.add_argument("--port", type=int, help="Bind port")

    crawl_parser = commands.add_parser("crawl", help="Crawl URLs into the index and print the summary")
    crawl_parser.add_argument("urls", nargs="+", help="Seed URLs")
    crawl_parser.add_argument("--max-depth", type=int, help="Link depth limit")

    commands.add_parser("init-index", help="Create the index and apply its settings")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env(args.config)

    setup_logging(
        level=args.log_level or settings.api.log_level,
        use_json=args.log_json or settings.api.log_json
    )

    if args.command == "serve":
        return serve(settings, args.host, args.port)
    if args.command == "crawl":
        return asyncio.run(run_crawl(settings, args.urls, args.max_depth))
    return asyncio.run(run_init_index(settings))


if __name__ == "__main__":
    sys.exit(main())
