"""Tests for change observation, AJAX monitoring and readiness waits."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from depthcrawl.observers import (
    BINDING_NAME,
    AjaxMonitor,
    ChangeObserver,
    wait_for_framework_load,
)


def fake_request(url='https://example.com/api/items', resource_type='xhr'):
    request = Mock()
    request.url = url
    request.resource_type = resource_type
    return request


def fake_response(request, status=200, body='{"ok": true}'):
    response = Mock()
    response.url = request.url
    response.request = request
    response.status = status
    response.text = AsyncMock(return_value=body)
    return response


class TestChangeObserver:
    """Tests for the binding-based change channel."""

    @pytest.mark.asyncio
    async def test_signals_collected_per_token(self, page_factory):
        """Signals are gathered per session token."""
        page = page_factory(evaluate_result=['react'])
        observer = ChangeObserver()

        session = await observer.start(page, window_ms=0)
        observer.handle_signal(None, {'token': session.token, 'kind': 'dom'})
        observer.handle_signal(None, {'token': session.token, 'kind': 'network'})
        signals = await observer.finish(session)

        assert signals.dom is True
        assert signals.network is True
        assert signals.history is False
        assert signals.changed is True
        assert signals.frameworks == ['react']

    @pytest.mark.asyncio
    async def test_stale_tokens_ignored(self, page_factory):
        """Signals from a finished pass never reach the next one."""
        page = page_factory(evaluate_result=[])
        observer = ChangeObserver()

        first = await observer.start(page, window_ms=0)
        await observer.finish(first)
        second = await observer.start(page, window_ms=0)
        observer.handle_signal(None, {'token': first.token, 'kind': 'dom'})
        observer.handle_signal(None, 'garbage')

        assert (await observer.finish(second)).changed is False

    @pytest.mark.asyncio
    async def test_binding_exposed_once_per_page(self, page_factory):
        """The binding is exposed once per page."""
        page = page_factory(evaluate_result=[])
        observer = ChangeObserver()

        await observer.finish(await observer.start(page, window_ms=0))
        await observer.finish(await observer.start(page, window_ms=0))

        page.expose_binding.assert_awaited_once_with(BINDING_NAME, observer.handle_signal)

    @pytest.mark.asyncio
    async def test_install_failure_tolerated(self, page_factory):
        """A failed install does not raise."""
        page = page_factory()
        page.evaluate.side_effect = Exception('no body')
        observer = ChangeObserver()

        session = await observer.start(page, window_ms=0)

        assert session.frameworks == []
        assert (await observer.finish(session)).changed is False

    @pytest.mark.asyncio
    async def test_discard(self, page_factory):
        """Discarded sessions stop collecting signals."""
        page = page_factory(evaluate_result=[])
        observer = ChangeObserver()
        session = await observer.start(page, window_ms=0)

        observer.discard(session)
        observer.handle_signal(None, {'token': session.token, 'kind': 'dom'})

        assert (await observer.finish(session)).changed is False


class TestAjaxMonitor:
    """Tests for AjaxMonitor."""

    @pytest.mark.asyncio
    async def test_records_xhr_responses(self, page_factory):
        """XHR responses are recorded with timing."""
        page = page_factory()
        monitor = AjaxMonitor(page, network_idle_ms=10, timeout_ms=500, poll_interval=0.005).start()

        request = fake_request()
        for handler in page.listeners['request']:
            handler(request)
        for handler in page.listeners['response']:
            await handler(fake_response(request))

        responses = await monitor.wait_for_idle()
        monitor.stop()

        assert len(responses) == 1
        assert responses[0].url == 'https://example.com/api/items'
        assert responses[0].status == 200
        assert responses[0].content == '{"ok": true}'
        assert responses[0].timing.duration >= 0
        assert page.listeners == {'request': [], 'response': []}

    @pytest.mark.asyncio
    async def test_ignores_documents_and_images(self, page_factory):
        """Documents and images are not AJAX traffic."""
        page = page_factory()
        monitor = AjaxMonitor(page, network_idle_ms=10, timeout_ms=500, poll_interval=0.005)

        for resource_type in ('document', 'image', 'stylesheet'):
            request = fake_request(resource_type=resource_type)
            monitor.on_request(request)
            await monitor.on_response(fake_response(request))

        assert await monitor.wait_for_idle() == []
        assert monitor.activity is False

    @pytest.mark.asyncio
    async def test_body_read_failure_keeps_record(self, page_factory):
        """An unreadable body still leaves a record."""
        monitor = AjaxMonitor(page_factory(), network_idle_ms=10, timeout_ms=500, poll_interval=0.005)
        request = fake_request(resource_type='fetch')
        response = fake_response(request)
        response.text.side_effect = Exception('body unavailable')

        monitor.on_request(request)
        await monitor.on_response(response)

        assert monitor.responses[0].content is None

    @pytest.mark.asyncio
    async def test_long_content_truncated(self, page_factory):
        """Long bodies are truncated."""
        monitor = AjaxMonitor(page_factory(), network_idle_ms=10, timeout_ms=500)
        request = fake_request()
        await monitor.on_response(fake_response(request, body='x' * 20_000))

        assert len(monitor.responses[0].content) == 10_000

    @pytest.mark.asyncio
    async def test_quiet_page_returns_quickly(self, page_factory):
        """With no traffic only the short grace period is spent."""
        monitor = AjaxMonitor(page_factory(), network_idle_ms=5000, timeout_ms=10_000, poll_interval=0.005)
        loop = asyncio.get_running_loop()

        started = loop.time()
        assert await monitor.wait_for_idle() == []
        assert loop.time() - started < 1

    @pytest.mark.asyncio
    async def test_pending_request_bounded_by_timeout(self, page_factory):
        """A request that never completes cannot hold the wait past the timeout."""
        monitor = AjaxMonitor(page_factory(), network_idle_ms=1000, timeout_ms=100, poll_interval=0.005)
        monitor.on_request(fake_request())
        loop = asyncio.get_running_loop()

        started = loop.time()
        await monitor.wait_for_idle()
        assert loop.time() - started < 1


class TestWaitForFrameworkLoad:
    """Tests for wait_for_framework_load."""

    @pytest.mark.asyncio
    async def test_ready(self, page_factory):
        """A ready page reports true."""
        page = page_factory()
        assert await wait_for_framework_load(page, 100) is True
        assert page.wait_for_function.await_args.kwargs['timeout'] == 100

    @pytest.mark.asyncio
    async def test_timeout_is_not_an_error(self, page_factory):
        """Timing out is reported, not raised."""
        page = page_factory()
        page.wait_for_function.side_effect = Exception('Timeout 100ms exceeded')
        assert await wait_for_framework_load(page, 100) is False
