#!/usr/bin/env python3
"""
Main CLI runner for maps-scrape-bot.

This script orchestrates a complete run:
- Loading and validating the JSON run input
- Launching the browser pool and storage
- Crawling Google Maps listings under a global watchdog
- Writing the cost summary and optionally exporting the dataset

Exit codes:
- 0: run finished
- 1: watchdog timeout or unrecovered error
- 2: invalid input or configuration
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from db import DatasetSink, KeyValueStore, create_session_factory
from runner.logging_setup import get_logger, setup_logging
from scrape_maps.browser_pool import BrowserPool
from scrape_maps.maps_config import MapsConfig, RunInput
from scrape_maps.maps_crawl import MapsCrawler
from scrape_maps.maps_errors import ConfigurationError
from scrape_maps.maps_logger import MapsScraperLogger


# Initialize logger
logger = get_logger("main")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="maps-scrape-bot: Scrape business listings from Google Maps",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with an input file
  maps-scrape-bot --input input.json

  # Give the whole run at most 20 minutes
  maps-scrape-bot --input input.json --timeout 1200

  # Export the scraped listings as a JSON array when done
  maps-scrape-bot --input input.json --export results.json

Input example:
  {
    "searchStringsArray": ["coffee shop"],
    "searchLocation": "Seattle, WA",
    "maxCrawledPlaces": 20,
    "maxCostPerRun": 1.5
  }
        """,
    )

    parser.add_argument(
        "--input",
        type=str,
        default="input.json",
        help="Path to the JSON run input (default: input.json)",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=None,
        help="Global run timeout in seconds (default: RUN_TIMEOUT_SECS env var or 600)",
    )
    parser.add_argument(
        "--export",
        type=str,
        default=None,
        help="Write the dataset to this JSON file after the run",
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="SQLAlchemy URL for the dataset and state store (default: DATABASE_URL env var)",
    )

    return parser.parse_args(argv)


def load_run_input(path: str) -> RunInput:
    """
    Read and validate the run input.

    Raises:
        ConfigurationError: If the file is missing, not JSON, or invalid
    """
    input_path = Path(path)
    if not input_path.exists():
        raise ConfigurationError(f"Input file not found: {input_path}")

    try:
        data = json.loads(input_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Input file is not valid JSON: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError("Input must be a JSON object")

    try:
        run_input = RunInput.from_dict(data)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Input error: {e}")

    run_input.validate()
    return run_input


async def run_crawl(run_input: RunInput, config: MapsConfig, session_factory):
    """
    Run one crawl inside a browser pool.

    Returns:
        RunSummary from the crawler
    """
    dataset = DatasetSink(session_factory, name=config.scraping.dataset_name)
    failed_dataset = DatasetSink(session_factory, name=config.scraping.failed_dataset_name)
    kv_store = KeyValueStore(session_factory)

    ignored = sorted(key for key in run_input.proxy_config if key != "proxyUrls")
    if ignored:
        logger.warning(f"Ignoring unsupported proxyConfig keys: {', '.join(ignored)}")

    async with BrowserPool(config.playwright, run_input.proxy_urls, run_input.language) as browser:
        crawler = MapsCrawler(
            run_input,
            browser,
            dataset,
            kv_store,
            config=config,
            logger=MapsScraperLogger(log_dir=config.log_dir),
            failed_dataset=failed_dataset,
        )
        summary = await crawler.run()
        logger.info(f"Browser pool: {browser.get_stats()}")
        return summary


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)
    config = MapsConfig.from_env()
    setup_logging("main", log_level=config.log_level.upper())

    logger.info("=" * 70)
    logger.info("MAPS-SCRAPE-BOT STARTED")
    logger.info("=" * 70)

    try:
        run_input = load_run_input(args.input)
    except ConfigurationError as e:
        logger.error(str(e))
        return EXIT_CONFIG_ERROR

    timeout = args.timeout if args.timeout is not None else config.run_timeout
    database_url = args.database_url or config.database.get_connection_string()

    logger.info(f"Input:    {args.input}")
    logger.info(f"Timeout:  {timeout}s")
    logger.info(f"Database: {database_url}")
    logger.info(f"Config:   {config.summary()}")
    logger.info("")

    session_factory = create_session_factory(database_url)

    try:
        summary = asyncio.run(asyncio.wait_for(
            run_crawl(run_input, config, session_factory),
            timeout=timeout,
        ))
    except ConfigurationError as e:
        logger.error(str(e))
        return EXIT_CONFIG_ERROR
    except asyncio.TimeoutError:
        logger.error(f"Run exceeded the global timeout of {timeout}s")
        return EXIT_FAILURE
    except Exception as e:
        logger.error(f"Run failed: {e}", exc_info=True)
        return EXIT_FAILURE

    logger.info("")
    logger.info("=" * 70)
    logger.info("RUN SUMMARY")
    logger.info("=" * 70)
    logger.info(f"Items scraped (total):  {summary.scraped_items_count}")
    logger.info(f"Items emitted this run: {summary.emitted_this_run}")
    logger.info(f"Failed tasks:           {summary.failed_tasks}")
    logger.info(f"Estimated cost:         ${summary.cost_summary['costs']['totalCost']}")
    logger.info(f"Duration:               {summary.duration_seconds:.1f}s")

    if args.export:
        dataset = DatasetSink(session_factory, name=config.scraping.dataset_name)
        exported = dataset.export(args.export)
        logger.info(f"Exported {exported} items to {args.export}")

    logger.info("=" * 70)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
