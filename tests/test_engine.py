"""Tests for the crawl orchestrator."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeout

from depthcrawl import engine as engine_module
from depthcrawl.engine import CrawlerEngine, screenshot_path
from depthcrawl.models import FormInteractionResult, PageSummary


@pytest.fixture
def engine(make_config, monkeypatch):
    """Engine whose page-level collaborators are all stubbed."""
    crawler = CrawlerEngine(make_config())
    monkeypatch.setattr(engine_module, 'analyze_page', AsyncMock(return_value=PageSummary()))
    monkeypatch.setattr(engine_module, 'find_clickable_elements', AsyncMock(return_value=[]))
    crawler.form_handler.interact_with_forms = AsyncMock(return_value=[])
    crawler.interactor.interact_with_elements = AsyncMock(return_value=[])
    return crawler


@pytest.fixture
def context(page_factory):
    ctx = Mock()
    ctx.pages = []

    async def new_page():
        page = page_factory()
        ctx.pages.append(page)
        return page

    ctx.new_page = AsyncMock(side_effect=new_page)
    return ctx


class TestScreenshotPath:
    """Tests for screenshot_path."""

    def test_root(self):
        """The site root maps to _.png."""
        assert screenshot_path('out', 'https://example.com/') == Path('out') / '_.png'

    def test_nested(self):
        """Path segments join with underscores and the query is dropped."""
        assert screenshot_path('out', 'https://example.com/a/b?x=1') == Path('out') / '_a_b.png'

    def test_bare_host(self):
        """A bare host maps like the root."""
        assert screenshot_path('out', 'https://example.com') == Path('out') / '_.png'


class TestProcessUrl:
    """Tests for CrawlerEngine.process_url."""

    @pytest.mark.asyncio
    async def test_links_enqueued_one_level_deeper(self, engine, context, monkeypatch):
        """Links found on a page are queued one level deeper."""
        monkeypatch.setattr(engine_module, 'analyze_page', AsyncMock(return_value=PageSummary(
            links=['https://example.com/a', 'https://other.com/b'],
            forms=['search'],
        )))

        report = await engine.process_url(context, 'https://example.com/', 0)

        assert report.title == 'Example'
        assert report.links_found == 2
        assert report.forms_found == 1
        assert engine.url_queue.queue_size == 1
        assert engine.url_queue.get_current_depth('https://example.com/a') == 1
        context.pages[0].close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_forms_then_elements_then_marked(self, engine, context):
        """Forms run before elements, then the page is marked visited."""
        engine.form_handler.interact_with_forms.return_value = [FormInteractionResult('f', True)]

        report = await engine.process_url(context, 'https://example.com/p', 1)

        page = context.pages[0]
        engine.form_handler.interact_with_forms.assert_awaited_once_with(page)
        engine.interactor.interact_with_elements.assert_awaited_once_with(page, [], 'https://example.com/p')
        assert report.form_results[0].form_id == 'f'
        assert engine.tracker.has_url_been_visited('https://example.com/p')

    @pytest.mark.asyncio
    async def test_interactions_can_be_disabled(self, make_config, context, monkeypatch):
        """Element interaction can be switched off."""
        crawler = CrawlerEngine(make_config(interactWithForms=False, interactWithElements=False))
        monkeypatch.setattr(engine_module, 'analyze_page', AsyncMock(return_value=PageSummary()))
        monkeypatch.setattr(engine_module, 'find_clickable_elements', AsyncMock(return_value=[]))
        crawler.form_handler.interact_with_forms = AsyncMock()
        crawler.interactor.interact_with_elements = AsyncMock()

        await crawler.process_url(context, 'https://example.com/', 0)

        crawler.form_handler.interact_with_forms.assert_not_awaited()
        crawler.interactor.interact_with_elements.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_navigation_timeout_proceeds(self, engine, context, page_factory):
        """A navigation timeout does not abort the page."""
        page = page_factory()
        page.goto.side_effect = PlaywrightTimeout('Timeout 1000ms exceeded')
        context.new_page = AsyncMock(return_value=page)

        report = await engine.process_url(context, 'https://example.com/slow', 0)

        assert report.error is None
        engine.interactor.interact_with_elements.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_page_error_reported_and_page_closed(self, engine, context, page_factory):
        """Page errors are recorded and the page is still closed."""
        page = page_factory()
        page.goto.side_effect = Exception('net::ERR_CONNECTION_REFUSED')
        context.new_page = AsyncMock(return_value=page)

        report = await engine.process_url(context, 'https://example.com/down', 0)

        assert report.error == 'net::ERR_CONNECTION_REFUSED'
        page.close.assert_awaited_once()
        assert not engine.tracker.has_url_been_visited('https://example.com/down')

    @pytest.mark.asyncio
    async def test_robots_disallowed(self, engine, context):
        """URLs disallowed by robots.txt are not loaded."""
        engine.robots = Mock()
        engine.robots.can_fetch = AsyncMock(return_value=False)

        report = await engine.process_url(context, 'https://example.com/private', 0)

        assert report.skipped_reason == 'Disallowed by robots.txt'
        context.new_page.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_screenshot_saved(self, make_config, context, monkeypatch, tmp_path):
        """A screenshot is written when enabled."""
        crawler = CrawlerEngine(make_config(saveScreenshots=True, interactWithForms=False, interactWithElements=False))
        monkeypatch.setattr(engine_module, 'analyze_page', AsyncMock(return_value=PageSummary()))
        monkeypatch.setattr(engine_module, 'find_clickable_elements', AsyncMock(return_value=[]))

        await crawler.process_url(context, 'https://example.com/docs/intro', 0)

        expected = Path(crawler.config.output_dir) / '_docs_intro.png'
        context.pages[0].screenshot.assert_awaited_once_with(path=str(expected), full_page=True)


class TestCrawl:
    """Tests for the crawl loop."""

    @pytest.mark.asyncio
    async def test_breadth_of_frontier_processed_in_order(self, engine, context, monkeypatch):
        """Queued URLs are processed in the order they were found."""
        links = {
            'https://example.com': ['https://example.com/a', 'https://example.com/b'],
            'https://example.com/a': ['https://example.com/c', 'https://example.com/'],
        }
        seen = []

        async def analyze(page):
            url = page.goto.await_args.args[0]
            seen.append(url)
            return PageSummary(links=links.get(url, []))

        monkeypatch.setattr(engine_module, 'analyze_page', analyze)

        await engine.crawl(context)

        assert seen == ['https://example.com', 'https://example.com/a', 'https://example.com/b',
                        'https://example.com/c']
        assert [r.depth for r in engine.page_reports] == [0, 1, 1, 2]
        assert engine.url_queue.visited_count == 4

    @pytest.mark.asyncio
    async def test_max_depth_respected(self, make_config, context, monkeypatch):
        """Links past the maximum depth are not followed."""
        crawler = CrawlerEngine(make_config(maxDepth=1, interactWithForms=False, interactWithElements=False))
        monkeypatch.setattr(engine_module, 'find_clickable_elements', AsyncMock(return_value=[]))
        counter = iter(range(100))

        async def analyze(page):
            return PageSummary(links=[f'https://example.com/p{next(counter)}'])

        monkeypatch.setattr(engine_module, 'analyze_page', analyze)

        await crawler.crawl(context)

        assert [r.depth for r in crawler.page_reports] == [0, 1]

    @pytest.mark.asyncio
    async def test_request_delay(self, make_config, context, monkeypatch):
        """The request delay is slept between pages."""
        crawler = CrawlerEngine(make_config(requestDelay=250, interactWithForms=False, interactWithElements=False))
        monkeypatch.setattr(engine_module, 'analyze_page', AsyncMock(return_value=PageSummary()))
        monkeypatch.setattr(engine_module, 'find_clickable_elements', AsyncMock(return_value=[]))
        sleep = AsyncMock()
        monkeypatch.setattr(engine_module.asyncio, 'sleep', sleep)

        await crawler.crawl(context)

        sleep.assert_awaited_once_with(0.25)

    def test_register_navigation(self, engine):
        """Click-found navigations are admitted once, and only in scope."""
        assert engine.register_navigation('https://example.com/next', 1) is True
        assert engine.register_navigation('https://example.com/next', 1) is False
        assert engine.register_navigation('https://other.com/', 1) is False
        assert engine.url_queue.get_current_depth('https://example.com/next') == 1


class TestRun:
    """Tests for the browser lifecycle."""

    def test_launch_and_context_options(self, make_config):
        """Launch and context options follow the config."""
        crawler = CrawlerEngine(make_config(headless=False, proxy={'server': 'http://proxy:8080', 'ignoreHTTPSErrors': True}))

        assert crawler._launch_options() == {'headless': False, 'proxy': {'server': 'http://proxy:8080'}}
        assert crawler._context_options() == {'viewport': {'width': 1920, 'height': 1080}, 'ignore_https_errors': True}

    @pytest.mark.asyncio
    async def test_run_writes_summary_and_closes_browser(self, engine, monkeypatch):
        """A run writes the summary and closes the browser."""
        browser = Mock()
        browser.new_context = AsyncMock(return_value=Mock())
        browser.close = AsyncMock()
        playwright = Mock()
        playwright.chromium.launch = AsyncMock(return_value=browser)
        manager = MagicMock()
        manager.__aenter__.return_value = playwright
        monkeypatch.setattr(engine_module, 'async_playwright', Mock(return_value=manager))
        engine.crawl = AsyncMock()

        summary = await engine.run()

        browser.close.assert_awaited_once()
        playwright.chromium.launch.assert_awaited_once_with(headless=True)
        written = json.loads((Path(engine.config.output_dir) / 'crawl_summary.json').read_text())
        assert written['meta']['start_url'] == 'https://example.com/'
        assert summary['stats']['forms_count'] == 0

    @pytest.mark.asyncio
    async def test_browser_closed_on_crawl_error(self, engine, monkeypatch):
        """The browser is closed even when the crawl fails."""
        browser = Mock()
        browser.new_context = AsyncMock(return_value=Mock())
        browser.close = AsyncMock()
        playwright = Mock()
        playwright.chromium.launch = AsyncMock(return_value=browser)
        manager = MagicMock()
        manager.__aenter__.return_value = playwright
        monkeypatch.setattr(engine_module, 'async_playwright', Mock(return_value=manager))
        engine.crawl = AsyncMock(side_effect=RuntimeError('browser crashed'))

        with pytest.raises(RuntimeError):
            await engine.run()
        browser.close.assert_awaited_once()
