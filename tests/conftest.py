"""Shared test fixtures and configuration."""

from unittest.mock import AsyncMock, MagicMock, Mock

import pytest

from depthcrawl.config import CrawlerConfig
from depthcrawl.element_interactor import InteractionOptions
from depthcrawl.models import ClickableElement


@pytest.fixture
def make_config(tmp_path):
    """Factory for a valid CrawlerConfig; keyword overrides use camelCase keys."""
    def _make(**overrides):
        data = {
            'startUrl': 'https://example.com/',
            'allowedDomains': ['example.com'],
            'maxDepth': 2,
            'maxPagesPerDomain': 10,
            'timeout': 1000,
            'outputDir': str(tmp_path / 'output'),
        }
        data.update(overrides)
        return CrawlerConfig.model_validate(data)
    return _make


@pytest.fixture
def fast_options():
    """InteractionOptions with every wait shrunk so tests run quickly."""
    return InteractionOptions(
        timeout=200,
        allowed_domains=['example.com'],
        framework_timeout=10,
        retry_delay=1,
        network_idle_time=10,
        change_window_ms=0,
        click_timeout=10,
    )


@pytest.fixture
def make_element():
    """Factory for ClickableElement instances."""
    def _make(text='Load more', selector=None, type='button', href=None, reasons=None):
        return ClickableElement(
            selector=selector or f':text("{text}")',
            type=type,
            text=text,
            href=href,
            interactive_reasons=reasons if reasons is not None else ['button'],
        )
    return _make


def build_mock_page(url='https://example.com/', evaluate_result=None):
    """A Playwright-like page double.

    Async page methods are AsyncMocks; ``on``/``remove_listener`` record
    handlers in ``page.listeners`` so tests can fire request/response events.
    """
    page = Mock()
    page.url = url
    page.listeners = {}

    def on(event, handler):
        page.listeners.setdefault(event, []).append(handler)

    def remove_listener(event, handler):
        if handler in page.listeners.get(event, []):
            page.listeners[event].remove(handler)

    page.on = Mock(side_effect=on)
    page.remove_listener = Mock(side_effect=remove_listener)
    page.evaluate = AsyncMock(return_value=evaluate_result)
    page.wait_for_function = AsyncMock(return_value=True)
    page.wait_for_load_state = AsyncMock()
    page.expose_binding = AsyncMock()
    page.query_selector = AsyncMock(return_value=None)
    page.query_selector_all = AsyncMock(return_value=[])
    page.goto = AsyncMock()
    page.title = AsyncMock(return_value='Example')
    page.screenshot = AsyncMock()
    page.close = AsyncMock()
    page.mouse = Mock()
    page.mouse.click = AsyncMock()
    page.context = Mock()
    page.context.new_page = AsyncMock()
    page.expect_response = MagicMock()
    page.expect_navigation = MagicMock()
    return page


def build_mock_handle(visible=True, click_side_effect=None):
    """A Playwright-like element handle double."""
    handle = Mock()
    handle.is_visible = AsyncMock(return_value=visible)
    handle.click = AsyncMock(side_effect=click_side_effect)
    handle.evaluate = AsyncMock()
    handle.bounding_box = AsyncMock(return_value={'x': 10, 'y': 20, 'width': 100, 'height': 40})
    handle.fill = AsyncMock()
    handle.check = AsyncMock()
    handle.select_option = AsyncMock()
    handle.query_selector_all = AsyncMock(return_value=[])
    return handle


@pytest.fixture
def mock_page():
    return build_mock_page()


@pytest.fixture
def page_factory():
    return build_mock_page


@pytest.fixture
def handle_factory():
    return build_mock_handle
