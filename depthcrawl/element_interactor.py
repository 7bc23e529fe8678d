"""Element interaction: click one classified element and judge what changed.

Per element the flow is pre-check -> locate -> click -> observe -> classify.
``ElementInteractor.interact_with_elements`` drives a whole page: elements
revealed by an interaction go to the front of the work queue, so freshly
exposed content is explored before its siblings.
"""

import asyncio
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional
from urllib.parse import urljoin

from playwright.async_api import ElementHandle, Page

from .element_finder import find_clickable_elements
from .models import (
    ClickableElement,
    InteractionFailure,
    InteractionResult,
    InteractionSuccess,
    NavigationSuccess,
    SkippedDueToScope,
)
from .observers import AjaxMonitor, ChangeObserver, wait_for_framework_load
from .patterns import AJAX_URL_RE, INTERCEPTING_OVERLAY_SELECTOR, MAX_SELECTOR_TEXT, SCRIPT_HREF_PREFIX
from .tracker import InteractionTracker
from .url_queue import UrlQueue
from .url_utils import is_url_allowed, parse_absolute_url, should_process_url, strip_query_and_fragment

log = logging.getLogger(__name__)


_NEUTRALIZE_OVERLAY_JS = '''
(selector) => {
    const overlay = document.querySelector(selector);
    if (overlay) {
        overlay.style.pointerEvents = 'none';
        overlay.style.zIndex = '-1';
    }
    return !!overlay;
}
'''

# Backoff between locate attempts, in seconds.
_LOCATE_BACKOFF = 0.1


@dataclass
class InteractionOptions:
    """Timing and scope knobs for element interaction. Times in ms."""
    timeout: int = 30000
    allowed_domains: list = field(default_factory=list)
    framework_timeout: int = 2000
    retry_delay: int = 100
    network_idle_time: int = 300
    max_dynamic_depth: int = 10
    always_process_query_urls: bool = True
    change_window_ms: int = 1000
    click_timeout: int = 2000
    locate_attempts: int = 3
    click_attempts: int = 3

    @classmethod
    def from_config(cls, config) -> 'InteractionOptions':
        return cls(
            timeout=config.timeout,
            allowed_domains=list(config.allowed_domains),
            framework_timeout=config.framework_timeout,
            retry_delay=config.retry_delay,
            network_idle_time=config.network_idle_time,
            max_dynamic_depth=config.max_dynamic_depth,
            always_process_query_urls=config.always_process_query_urls,
        )


def _quote(value: str) -> str:
    return value.replace('\\', '\\\\').replace('"', '\\"')


def alternative_selectors(element: ClickableElement) -> list:
    """Fallback selectors derived from the element's text, in priority order."""
    text = element.text[:MAX_SELECTOR_TEXT]
    if not text:
        return []
    quoted = _quote(text)
    return [
        f'[data-testid="{quoted}"]',
        f'[aria-label="{quoted}"]',
        f'[title="{quoted}"]',
        f':text-matches("{_quote(re.escape(text))}", "i")',
    ]


class ElementInteractor:
    """Clicks elements on a live page and reports what each click revealed.

    Interactions on one page run strictly one after another; the page is
    shared and concurrent clicks on it are not attempted.
    """

    def __init__(
        self,
        tracker: InteractionTracker,
        url_queue: UrlQueue,
        options: InteractionOptions,
        form_handler=None,
        on_navigation: Optional[Callable[[str, int], bool]] = None,
        change_observer: Optional[ChangeObserver] = None,
    ):
        self.tracker = tracker
        self.url_queue = url_queue
        self.options = options
        self.form_handler = form_handler
        self.on_navigation = on_navigation
        self.change_observer = change_observer or ChangeObserver()

    # -----------------------------------------------------------------------
    # Page driver
    # -----------------------------------------------------------------------

    async def interact_with_elements(
        self,
        page: Page,
        elements: list,
        start_url: str,
    ) -> list[InteractionResult]:
        """Interact with every element, then with whatever each one reveals."""
        results = []
        page_key = strip_query_and_fragment(start_url)
        work = deque((element, 0) for element in elements)
        seen = {element.identity_key for element in elements}
        processed: set[str] = set()

        while work:
            element, depth = work.popleft()
            key = element.identity_key
            if key in processed:
                log.debug('Skipping already processed element: %s', element.text)
                continue
            processed.add(key)

            ledger_key = f'{page_key}::{key}'
            if self.tracker.has_element_been_interacted(ledger_key):
                log.debug('Element already exercised on this page: %s', element.text)
                continue
            self.tracker.add_interacted_element(ledger_key)

            result = await self.interact_with_element(page, element, start_url)
            results.append(result)

            revealed = getattr(result, 'new_elements_found', None)
            if not (result.success and revealed):
                continue

            fresh = []
            for candidate in revealed:
                candidate_key = candidate.identity_key
                if candidate_key in seen or candidate_key in processed:
                    continue
                seen.add(candidate_key)
                fresh.append(candidate)
            if not fresh:
                continue

            if depth + 1 > self.options.max_dynamic_depth:
                log.info('Dynamic depth ceiling (%d) reached; dropping %d revealed elements',
                         self.options.max_dynamic_depth, len(fresh))
                continue

            log.info('Adding %d newly revealed elements to process next', len(fresh))
            work.extendleft((candidate, depth + 1) for candidate in reversed(fresh))

        log.info('Interaction stats: %s', self.tracker.get_stats())
        return results

    # -----------------------------------------------------------------------
    # Single element
    # -----------------------------------------------------------------------

    async def interact_with_element(
        self,
        page: Page,
        element: ClickableElement,
        start_url: str,
    ) -> InteractionResult:
        """Run one interaction end to end. Never raises."""
        log.info('Attempting to interact with: %s "%s"', element.type, element.text[:60])
        try:
            skipped = self.pre_check(element, start_url)
            if skipped is not None:
                return skipped

            handle = await self.locate(page, element)
            if handle is None:
                return InteractionFailure(element, reason='Element not found')

            try:
                visible = await handle.is_visible()
            except Exception:
                visible = False
            if not visible:
                return InteractionFailure(element, reason='Element not visible')

            return await self._click_and_observe(page, element, handle, start_url)
        except Exception as exc:
            log.info('Error during interaction: %s', exc)
            return InteractionFailure(element, reason=str(exc))

    def pre_check(self, element: ClickableElement, start_url: str) -> Optional[SkippedDueToScope]:
        """Decide from the href alone whether the click is worth making."""
        href = (element.href or '').strip()
        if not href:
            return None

        if href.lower().startswith(SCRIPT_HREF_PREFIX):
            script_key = f'{SCRIPT_HREF_PREFIX}{href[len(SCRIPT_HREF_PREFIX):]}|{element.text}'
            if self.tracker.has_element_been_interacted(script_key):
                return SkippedDueToScope(element, reason='JavaScript function already called')
            self.tracker.add_interacted_element(script_key)
            return None

        resolved = urljoin(start_url, href)
        parts = parse_absolute_url(resolved)
        has_query = bool(parts and parts.query)
        # Query strings often carry state-changing parameters.
        query_exempt = has_query and self.options.always_process_query_urls
        ajax_style = bool(AJAX_URL_RE.search(resolved))

        if not (ajax_style or query_exempt) and not should_process_url(resolved, self.options.allowed_domains):
            log.info('Skipping out-of-scope link: %s', resolved)
            return SkippedDueToScope(element, reason='URL out of allowed domains')

        if not query_exempt and '#' not in href and self.url_queue.has_been_visited(resolved):
            return SkippedDueToScope(element, reason='URL already visited')
        return None

    async def locate(self, page: Page, element: ClickableElement) -> Optional[ElementHandle]:
        """Resolve the element on the live page, falling back on text selectors."""
        selectors = [element.selector, *alternative_selectors(element)]
        for attempt in range(self.options.locate_attempts):
            await wait_for_framework_load(page, self.options.framework_timeout)
            for selector in selectors:
                try:
                    handle = await page.query_selector(selector)
                except Exception as exc:
                    log.debug('Selector %s failed: %s', selector, exc)
                    continue
                if handle is not None:
                    return handle
            await asyncio.sleep(_LOCATE_BACKOFF * (attempt + 1))
        return None

    async def smart_click(self, page: Page, handle: ElementHandle) -> bool:
        """Native click, then script click, then pointer click at the centre."""
        strategies = (
            ('native', lambda: handle.click(timeout=self.options.click_timeout)),
            ('script', lambda: handle.evaluate('el => el.click()')),
            ('pointer', lambda: self._pointer_click(page, handle)),
        )
        for attempt in range(self.options.click_attempts):
            if attempt > 0:
                await self._neutralize_overlay(page)
            for name, strategy in strategies:
                try:
                    await strategy()
                    log.debug('Clicked with %s strategy (round %d)', name, attempt + 1)
                    return True
                except Exception as exc:
                    log.debug('%s click failed: %s', name, exc)
            await asyncio.sleep(self.options.retry_delay / 1000)
        return False

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    async def _click_and_observe(
        self,
        page: Page,
        element: ClickableElement,
        handle: ElementHandle,
        start_url: str,
    ) -> InteractionResult:
        monitor = AjaxMonitor(page, self.options.network_idle_time, self.options.timeout).start()
        session = await self.change_observer.start(page, self.options.change_window_ms)
        try:
            if not await self.smart_click(page, handle):
                return InteractionFailure(element, reason='Failed to click element')

            monitor.mark_active()
            await asyncio.gather(
                monitor.wait_for_idle(),
                self._wait_for_network_idle(page),
                wait_for_framework_load(page, self.options.framework_timeout),
            )
            signals = await self.change_observer.finish(session)
        finally:
            monitor.stop()
            self.change_observer.discard(session)

        # Responses that landed after the idle wait still count.
        ajax_responses = list(monitor.responses)
        new_elements = await find_clickable_elements(page)
        log.info('Found %d elements after interaction', len(new_elements))

        new_url = page.url
        caused_navigation = self._normalize(new_url) != self._normalize(start_url)

        # In-place AJAX updates outrank a URL change.
        if new_elements and (ajax_responses or not caused_navigation):
            return InteractionSuccess(
                element,
                dynamic_changes_detected=True,
                new_elements_found=new_elements,
                ajax_responses=ajax_responses,
            )

        if caused_navigation and '#' not in new_url:
            return await self._handle_navigation(page, element, start_url, new_url, ajax_responses)

        return InteractionSuccess(
            element,
            dynamic_changes_detected=signals.changed or monitor.activity,
            new_elements_found=new_elements,
            ajax_responses=ajax_responses,
        )

    async def _handle_navigation(
        self,
        page: Page,
        element: ClickableElement,
        start_url: str,
        new_url: str,
        ajax_responses: list,
    ) -> NavigationSuccess:
        out_of_scope = not is_url_allowed(new_url, self.options.allowed_domains)
        if not out_of_scope and not self.url_queue.has_been_visited(new_url):
            depth = self.url_queue.get_current_depth(start_url) + 1
            if self.on_navigation is not None and self.on_navigation(new_url, depth):
                log.info('Processing new page at %s', new_url)
            if self.form_handler is not None:
                form_results = await self.form_handler.interact_with_forms(page)
                if form_results:
                    log.info('Processed %d forms on new page', len(form_results))

        returned = await self._return_to(page, start_url)
        return NavigationSuccess(
            element,
            new_url=new_url,
            skipped_due_to_scope=out_of_scope,
            returned_to_previous_page=returned,
            ajax_responses=ajax_responses,
        )

    async def _return_to(self, page: Page, start_url: str) -> bool:
        try:
            await page.goto(start_url, timeout=self.options.timeout / 2, wait_until='networkidle')
        except Exception as exc:
            log.warning('Could not return to %s: %s', start_url, exc)
        return self._normalize(page.url) == self._normalize(start_url)

    async def _wait_for_network_idle(self, page: Page) -> None:
        try:
            await page.wait_for_load_state('networkidle', timeout=self.options.network_idle_time)
        except Exception as exc:
            log.debug('Network did not go idle: %s', exc)

    async def _pointer_click(self, page: Page, handle: ElementHandle) -> None:
        box = await handle.bounding_box()
        if not box:
            raise RuntimeError('Element has no bounding box')
        await page.mouse.click(box['x'] + box['width'] / 2, box['y'] + box['height'] / 2)

    async def _neutralize_overlay(self, page: Page) -> None:
        try:
            await page.evaluate(_NEUTRALIZE_OVERLAY_JS, INTERCEPTING_OVERLAY_SELECTOR)
        except Exception as exc:
            log.debug('Overlay handling failed: %s', exc)

    def _normalize(self, url: str) -> str:
        return self.url_queue.normalize_url(url)
