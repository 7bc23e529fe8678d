"""Crawl orchestrator: the top-level loop over the URL frontier.

For every dequeued URL the engine loads the page, enqueues its links, runs
the form handler, then the dynamic-depth element pass. The engine is the
only writer of the frontier; interactions that navigate report new URLs
back through ``register_navigation``.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from playwright.async_api import BrowserContext, Page, TimeoutError as PlaywrightTimeout, async_playwright

from .config import CrawlerConfig
from .element_finder import find_clickable_elements
from .element_interactor import ElementInteractor, InteractionOptions
from .form_handler import FormHandler
from .models import PageReport
from .page_analyzer import analyze_page
from .reporting import build_crawl_summary, format_crawl_summary, write_crawl_summary
from .robots import RobotsPolicy
from .tracker import InteractionTracker
from .url_queue import UrlQueue

log = logging.getLogger(__name__)

VIEWPORT = {'width': 1920, 'height': 1080}


def screenshot_path(output_dir, url: str) -> Path:
    """outputDir/<path with '/' replaced by '_'>.png"""
    path = urlparse(url).path or '/'
    return Path(output_dir) / f"{path.replace('/', '_')}.png"


class CrawlerEngine:
    """Owns the frontier and ledger for one crawl."""

    def __init__(self, config: CrawlerConfig, tracker: Optional[InteractionTracker] = None):
        self.config = config
        self.tracker = tracker or InteractionTracker()
        self.url_queue = UrlQueue(
            config.max_depth,
            config.max_pages_per_domain,
            config.allowed_domains,
            ignore_query_params=config.ignore_query_params,
            ignore_hash_fragments=config.ignore_hash_fragments,
        )
        self.form_handler = FormHandler(
            self.tracker,
            timeout_ms=config.timeout,
            response_timeout_ms=config.form_response_timeout,
        )
        self.interactor = ElementInteractor(
            self.tracker,
            self.url_queue,
            InteractionOptions.from_config(config),
            form_handler=self.form_handler,
            on_navigation=self.register_navigation,
        )
        self.robots: Optional[RobotsPolicy] = None
        self.page_reports: list[PageReport] = []

    # -----------------------------------------------------------------------
    # Browser lifecycle
    # -----------------------------------------------------------------------

    async def run(self) -> dict:
        """Launch the browser, crawl, write the summary and return it."""
        async with async_playwright() as p:
            browser = await p.chromium.launch(**self._launch_options())
            try:
                context = await browser.new_context(**self._context_options())
                await self.crawl(context)
            finally:
                await browser.close()

        summary = build_crawl_summary(self.config.start_url, self.page_reports, self.tracker.get_stats())
        write_crawl_summary(summary, self.config.output_dir)
        log.info('\n%s', format_crawl_summary(summary))
        return summary

    def _launch_options(self) -> dict:
        options = {'headless': self.config.headless}
        if self.config.proxy:
            options['proxy'] = {'server': self.config.proxy.server}
        return options

    def _context_options(self) -> dict:
        return {
            'viewport': VIEWPORT,
            'ignore_https_errors': bool(self.config.proxy and self.config.proxy.ignore_https_errors),
        }

    # -----------------------------------------------------------------------
    # Crawl loop
    # -----------------------------------------------------------------------

    async def crawl(self, context: BrowserContext) -> None:
        if self.config.respect_robots_txt:
            self.robots = RobotsPolicy(context)

        self.url_queue.add(self.config.start_url)
        while True:
            url = self.url_queue.next()
            if url is None:
                break
            depth = self.url_queue.get_current_depth(url)
            self.page_reports.append(await self.process_url(context, url, depth))

            if self.config.request_delay > 0:
                await asyncio.sleep(self.config.request_delay / 1000)

        log.info('Crawling completed! Total pages visited: %d', self.url_queue.visited_count)

    def register_navigation(self, url: str, depth: int) -> bool:
        """Admit a URL reached by an interaction; True if newly queued."""
        added = self.url_queue.add(url, depth)
        if added:
            log.info('Queued navigation target (depth %d): %s', depth, url)
        return added

    async def process_url(self, context: BrowserContext, url: str, depth: int) -> PageReport:
        """Process one frontier URL. Errors end this page, never the crawl."""
        report = PageReport(url=url, depth=depth)
        log.info('Processing URL (depth %d): %s', depth, url)

        if self.robots is not None and not await self.robots.can_fetch(url):
            log.warning('Skipping %s (disallowed by robots.txt)', url)
            report.skipped_reason = 'Disallowed by robots.txt'
            return report

        page = await context.new_page()
        try:
            await self._process_page(page, url, depth, report)
        except Exception as exc:
            log.error('Error processing %s: %s', url, exc)
            report.error = str(exc)
        finally:
            await page.close()
        return report

    async def _process_page(self, page: Page, url: str, depth: int, report: PageReport) -> None:
        try:
            await page.goto(url, timeout=self.config.timeout, wait_until='networkidle')
        except PlaywrightTimeout:
            log.warning('Navigation timed out for %s - proceeding anyway', url)

        report.title = await page.title()
        log.info('Page title: %s', report.title)

        analysis = await analyze_page(page)
        report.links_found = len(analysis.links)
        report.forms_found = len(analysis.forms)
        log.info('Found %d links and %d forms', report.links_found, report.forms_found)

        queued = sum(1 for link in analysis.links if self.url_queue.add(link, depth + 1))
        log.debug('Queued %d new links from %s', queued, url)

        elements = await find_clickable_elements(page)
        report.clickable_found = len(elements)
        log.info('Found %d clickable elements', len(elements))

        if self.config.interact_with_forms:
            log.info('Starting form interactions...')
            report.form_results = await self.form_handler.interact_with_forms(page)
            log.info('Form interaction results: %d', len(report.form_results))

        if self.config.interact_with_elements:
            log.info('Starting element interactions...')
            report.interaction_results = await self.interactor.interact_with_elements(page, elements, url)

        self.tracker.add_visited_url(url)

        if self.config.save_screenshots:
            await self._save_screenshot(page, url)

    async def _save_screenshot(self, page: Page, url: str) -> None:
        path = screenshot_path(self.config.output_dir, url)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await page.screenshot(path=str(path), full_page=True)
            log.debug('Screenshot saved to %s', path)
        except Exception as exc:
            log.warning('Could not save screenshot for %s: %s', url, exc)
