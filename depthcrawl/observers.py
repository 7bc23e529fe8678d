"""Dynamic-change detection around a single interaction.

Three collaborating pieces:

ChangeObserver  - in-page watcher (DOM mutations, history API, hash changes,
                  fetch/XHR calls) that reports through a Playwright binding.
                  Each observation opens a session with its own token, so
                  signals from one pass never leak into the next.
AjaxMonitor     - request/response listeners that turn completed XHR/fetch
                  exchanges into AjaxResponse records and wait for the network
                  to go quiet.
wait_for_framework_load - bounded readiness check (document complete, nothing
                  aria-busy, no visible loading indicator).

Every wait here is bounded and degrades to "carry on" instead of raising.
"""

import asyncio
import logging
import time
import uuid
import weakref
from dataclasses import dataclass, field
from typing import Optional

from playwright.async_api import Page

from .models import AjaxResponse, AjaxTiming
from .patterns import FRAMEWORK_ROOTS, LOADING_INDICATOR_SELECTOR

log = logging.getLogger(__name__)

BINDING_NAME = '__depthcrawlSignal'

AJAX_RESOURCE_TYPES = ('xhr', 'fetch')

# Quiet period accepted when no XHR/fetch traffic showed up at all.
_NO_RESPONSE_GRACE_MS = 100

# Response bodies are kept for diagnostics only.
_MAX_CONTENT_CHARS = 10_000


# ---------------------------------------------------------------------------
# JS snippets
# ---------------------------------------------------------------------------

_INSTALL_WATCHER_JS = '''
({binding, token, windowMs, roots}) => {
    const detected = [];
    if (!document.body) {
        return detected;
    }
    const sent = new Set();
    const emit = (kind) => {
        if (sent.has(kind)) return;
        sent.add(kind);
        try {
            window[binding]({token, kind});
        } catch (e) {}
    };

    const options = {childList: true, subtree: true, attributes: true, characterData: true};
    const observer = new MutationObserver(mutations => {
        if (mutations.length > 0) emit('dom');
    });
    observer.observe(document.body, options);
    for (const [name, selector] of Object.entries(roots)) {
        const root = document.querySelector(selector);
        if (root) {
            if (root !== document.body) observer.observe(root, options);
            detected.push(name);
        }
    }

    const originalPushState = window.history.pushState;
    const originalReplaceState = window.history.replaceState;
    window.history.pushState = function (...args) {
        emit('history');
        return originalPushState.apply(this, args);
    };
    window.history.replaceState = function (...args) {
        emit('history');
        return originalReplaceState.apply(this, args);
    };
    const onHashChange = () => emit('hash');
    window.addEventListener('hashchange', onHashChange);

    const originalFetch = window.fetch;
    window.fetch = function (...args) {
        emit('network');
        return originalFetch.apply(this, args);
    };
    const originalSend = window.XMLHttpRequest.prototype.send;
    window.XMLHttpRequest.prototype.send = function (...args) {
        emit('network');
        return originalSend.apply(this, args);
    };

    setTimeout(() => {
        observer.disconnect();
        window.history.pushState = originalPushState;
        window.history.replaceState = originalReplaceState;
        window.removeEventListener('hashchange', onHashChange);
        window.fetch = originalFetch;
        window.XMLHttpRequest.prototype.send = originalSend;
    }, windowMs);

    return detected;
}
'''

_FRAMEWORK_READY_JS = '''
({roots, loadingSelector}) => {
    if (document.readyState !== 'complete') return false;

    const isShown = (el) => {
        const style = window.getComputedStyle(el);
        return style.display !== 'none' && style.visibility !== 'hidden' && el.getClientRects().length > 0;
    };

    for (const selector of roots) {
        const root = document.querySelector(selector);
        if (root && root.hasAttribute('aria-busy') && root.getAttribute('aria-busy') !== 'false') return false;
    }
    for (const el of document.querySelectorAll(loadingSelector)) {
        if (isShown(el)) return false;
    }
    if (!document.body) return true;
    for (const el of document.body.querySelectorAll('*')) {
        const className = typeof el.className === 'string' ? el.className : '';
        const saysLoading = el.children.length === 0 && /\\bloading\\b/i.test(el.textContent || '');
        if ((saysLoading || /loading|spinner/i.test(className)) && isShown(el)) return false;
    }
    return true;
}
'''


async def wait_for_framework_load(page: Page, timeout_ms: int) -> bool:
    """Wait until the page looks settled, at most timeout_ms.

    Returns False if readiness was not confirmed; callers continue anyway.
    """
    try:
        await page.wait_for_function(
            _FRAMEWORK_READY_JS,
            arg={'roots': list(FRAMEWORK_ROOTS.values()), 'loadingSelector': LOADING_INDICATOR_SELECTOR},
            timeout=timeout_ms,
        )
        return True
    except Exception as exc:
        log.debug('Framework readiness not confirmed within %dms: %s', timeout_ms, exc)
        return False


# ---------------------------------------------------------------------------
# In-page change watcher
# ---------------------------------------------------------------------------

@dataclass
class ChangeSignals:
    """What the in-page watcher reported for one observation window."""
    dom: bool = False
    history: bool = False
    hash: bool = False
    network: bool = False
    frameworks: list = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.dom or self.history or self.hash or self.network


@dataclass
class ObservationSession:
    token: str
    deadline: float
    frameworks: list = field(default_factory=list)


class ChangeObserver:
    """Collects change signals sent by the in-page watcher, keyed by token."""

    def __init__(self, binding_name: str = BINDING_NAME):
        self.binding_name = binding_name
        self._signals: dict[str, set[str]] = {}
        self._bound_pages = weakref.WeakSet()

    async def start(self, page: Page, window_ms: int) -> ObservationSession:
        """Install the watcher for window_ms and return its session."""
        token = uuid.uuid4().hex
        self._signals[token] = set()
        deadline = time.monotonic() + window_ms / 1000
        await self._ensure_binding(page)
        try:
            frameworks = await page.evaluate(_INSTALL_WATCHER_JS, {
                'binding': self.binding_name,
                'token': token,
                'windowMs': window_ms,
                'roots': FRAMEWORK_ROOTS,
            })
        except Exception as exc:
            log.debug('Could not install change watcher: %s', exc)
            frameworks = []
        return ObservationSession(token=token, deadline=deadline, frameworks=list(frameworks or []))

    async def finish(self, session: ObservationSession) -> ChangeSignals:
        """Wait out the session window, then hand back what it reported."""
        remaining = session.deadline - time.monotonic()
        if remaining > 0:
            await asyncio.sleep(remaining)
        kinds = self._signals.pop(session.token, set())
        return ChangeSignals(
            dom='dom' in kinds,
            history='history' in kinds,
            hash='hash' in kinds,
            network='network' in kinds,
            frameworks=session.frameworks,
        )

    def discard(self, session: ObservationSession) -> None:
        """Drop a session without waiting; no-op once finished."""
        self._signals.pop(session.token, None)

    def handle_signal(self, source, payload) -> None:
        """Binding callback; unknown or closed tokens are ignored."""
        if not isinstance(payload, dict):
            return
        kinds = self._signals.get(payload.get('token'))
        if kinds is not None:
            kinds.add(payload.get('kind'))

    async def _ensure_binding(self, page: Page) -> None:
        if page in self._bound_pages:
            return
        try:
            await page.expose_binding(self.binding_name, self.handle_signal)
        except Exception as exc:
            log.debug('Change binding unavailable on page: %s', exc)
        self._bound_pages.add(page)


# ---------------------------------------------------------------------------
# Network monitoring
# ---------------------------------------------------------------------------

def _now_ms() -> float:
    return time.time() * 1000


class AjaxMonitor:
    """Records XHR/fetch responses on a page while attached."""

    def __init__(self, page: Page, network_idle_ms: int, timeout_ms: int, poll_interval: float = 0.05):
        self.page = page
        self.network_idle_ms = network_idle_ms
        self.timeout_ms = timeout_ms
        self.poll_interval = poll_interval
        self.responses: list[AjaxResponse] = []
        self.activity = False
        self._pending: dict = {}
        self._reading = 0
        self._last_activity = time.monotonic()

    def start(self) -> 'AjaxMonitor':
        self._last_activity = time.monotonic()
        self.page.on('request', self.on_request)
        self.page.on('response', self.on_response)
        return self

    def mark_active(self) -> None:
        """Restart the quiet period, e.g. once the triggering click has returned."""
        self._last_activity = time.monotonic()

    def stop(self) -> None:
        for event, handler in (('request', self.on_request), ('response', self.on_response)):
            try:
                self.page.remove_listener(event, handler)
            except Exception as exc:
                log.debug('Could not detach %s listener: %s', event, exc)

    def on_request(self, request) -> None:
        if request.resource_type not in AJAX_RESOURCE_TYPES:
            return
        self._pending[request] = _now_ms()
        self.activity = True
        self._last_activity = time.monotonic()
        log.debug('AJAX request started: %s', request.url)

    async def on_response(self, response) -> None:
        request = response.request
        if request.resource_type not in AJAX_RESOURCE_TYPES:
            return
        completed = _now_ms()
        started = self._pending.pop(request, completed)
        self.activity = True
        self._reading += 1
        try:
            content = await _read_text(response)
            self.responses.append(AjaxResponse(
                url=response.url,
                status=response.status,
                content=content,
                timing=AjaxTiming(started=started, completed=completed, duration=completed - started),
            ))
        finally:
            self._reading -= 1
            self._last_activity = time.monotonic()

    async def wait_for_idle(self) -> list[AjaxResponse]:
        """Wait for XHR/fetch traffic to settle, capped at timeout_ms.

        Each new response pushes the quiet deadline out again. With no
        traffic at all only a short grace period is spent.
        """
        idle = self.network_idle_ms / 1000
        cap = self.timeout_ms / 1000
        started = time.monotonic()
        while time.monotonic() - started < cap:
            quiet_for = time.monotonic() - self._last_activity
            seen_traffic = bool(self.responses or self._pending)
            threshold = idle if seen_traffic else min(idle, _NO_RESPONSE_GRACE_MS / 1000)
            if not self._reading:
                if not self._pending and quiet_for >= threshold:
                    break
                # Long-lived requests (polling, beacons) do not hold the wait open.
                if quiet_for >= idle * 1.5:
                    break
            await asyncio.sleep(self.poll_interval)
        if not self.responses:
            log.debug('No AJAX responses received, continuing')
        return list(self.responses)


async def _read_text(response) -> Optional[str]:
    try:
        text = await response.text()
    except Exception as exc:
        log.debug('Could not read response body for %s: %s', response.url, exc)
        return None
    return text[:_MAX_CONTENT_CHARS]
