"""CLI entry point: ``depth-crawler [config.json]`` or ``python -m depthcrawl``."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .config import DEFAULT_CONFIG_PATH, ConfigError, load_config
from .engine import CrawlerEngine

log = logging.getLogger('depthcrawl')

LOG_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warn': logging.WARNING,
    'error': logging.ERROR,
}


def configure_logging(level: str = 'info') -> None:
    logging.basicConfig(format='[%(levelname)s] %(message)s')
    logging.getLogger().setLevel(LOG_LEVELS.get(level, logging.INFO))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='depth-crawler',
        description='Crawl a site across pages and through its dynamic, in-page states.',
    )
    parser.add_argument(
        'config',
        nargs='?',
        default=str(DEFAULT_CONFIG_PATH),
        help='Path to a JSON configuration file (default: bundled config)',
    )
    return parser


def main(argv=None) -> int:
    """Run one crawl. Returns the process exit code."""
    args = build_parser().parse_args(argv)
    configure_logging()

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        log.error('%s', exc)
        return 1

    configure_logging(config.log_level)
    log.info('Target: %s', config.start_url)

    try:
        Path(config.output_dir).mkdir(parents=True, exist_ok=True)
        asyncio.run(CrawlerEngine(config).run())
    except Exception as exc:
        log.error('Error executing crawling process: %s', exc)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
