"""Element classification: which visible elements on a page are interactive.

Candidate data is pulled from the page in a single evaluate() call; the
interactivity decision and the selector are computed in Python.
"""

import logging
import re
from collections import Counter

from playwright.async_api import Page

from .models import ClickableElement
from .patterns import (
    CANDIDATE_SELECTOR,
    INTERACTIVE_ROLES,
    MAX_SELECTOR_TEXT,
    NON_NAVIGABLE_HREF_PREFIXES,
)

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Batched JS for candidate collection (single browser round-trip)
# ---------------------------------------------------------------------------

_COLLECT_CANDIDATES_JS = '''
(selector) => {
    const results = [];
    for (const el of document.querySelectorAll(selector)) {
        const tag = el.tagName.toLowerCase();
        const rect = el.getBoundingClientRect();
        const style = window.getComputedStyle(el);
        const dataAttrs = [];
        for (const attr of el.attributes) {
            if (attr.name.startsWith('data-')) {
                dataAttrs.push([attr.name, attr.value]);
            }
        }
        const hrefAttr = el.getAttribute('href') || el.getAttribute('xlink:href') || '';
        const inputType = (el.getAttribute('type') || '').toLowerCase();
        results.push({
            tag,
            inputType,
            text: (el.textContent || '').replace(/\\s+/g, ' ').trim(),
            href: el instanceof HTMLAnchorElement ? el.href : hrefAttr,
            hrefAttr,
            role: el.getAttribute('role') || '',
            id: el.id || '',
            hasOnClick: el.hasAttribute('onclick'),
            hasTabIndex: el.hasAttribute('tabindex'),
            cursor: style.cursor,
            disabled: (el instanceof HTMLButtonElement || el instanceof HTMLInputElement) ? el.disabled : false,
            visible: rect.width > 0 && rect.height > 0 && style.visibility !== 'hidden',
            dataAttrs
        });
    }
    return results;
}
'''

_CSS_IDENT_RE = re.compile(r'^-?[A-Za-z_][A-Za-z0-9_-]*$')

_NATIVE_BUTTON_INPUT_TYPES = ('button', 'submit', 'reset')


def _quote(value: str) -> str:
    return value.replace('\\', '\\\\').replace('"', '\\"')


def is_native_button(data: dict) -> bool:
    tag = data.get('tag', '')
    return tag == 'button' or (tag == 'input' and data.get('inputType') in _NATIVE_BUTTON_INPUT_TYPES)


def element_type(tag: str) -> str:
    return {'button': 'button', 'a': 'link', 'div': 'div', 'span': 'span'}.get(tag, 'other')


def interactive_reasons(data: dict) -> list:
    """Every signal that qualifies a visible candidate as interactive."""
    reasons = []
    href = data.get('href') or ''
    if href and not href.lower().startswith(NON_NAVIGABLE_HREF_PREFIXES):
        reasons.append('valid href')
    if is_native_button(data):
        reasons.append('button')
    role = data.get('role', '')
    if role in INTERACTIVE_ROLES:
        reasons.append(f'aria-role:{role}')
    if data.get('hasOnClick'):
        reasons.append('has onclick')
    if data.get('hasTabIndex'):
        reasons.append('has tabindex')
    if data.get('cursor') == 'pointer':
        reasons.append('cursor:pointer')
    return reasons


def build_robust_selector(data: dict) -> str:
    """Selector that survives re-renders, most stable rule first.

    Priority order:
      1. [role="..."]:has-text("...") or [role="..."]
      2. :text("...") for anchors and buttons with text
      3. every data-* attribute concatenated
      4. tag + [href="..."] + [onclick] + #id
    """
    tag = data.get('tag', '')
    text = (data.get('text') or '')[:MAX_SELECTOR_TEXT]
    role = data.get('role', '')

    if role:
        if text:
            return f'[role="{_quote(role)}"]:has-text("{_quote(text)}")'
        return f'[role="{_quote(role)}"]'

    if text and tag in ('a', 'button'):
        return f':text("{_quote(text)}")'

    data_attrs = ''.join(f'[{name}="{_quote(value)}"]' for name, value in data.get('dataAttrs') or [])
    if data_attrs:
        return data_attrs

    selector = tag
    href_attr = data.get('hrefAttr') or ''
    if tag == 'a' and href_attr:
        selector += f'[href="{_quote(href_attr)}"]'
    if data.get('hasOnClick'):
        selector += '[onclick]'
    element_id = data.get('id') or ''
    if element_id:
        selector += f'#{element_id}' if _CSS_IDENT_RE.match(element_id) else f'[id="{_quote(element_id)}"]'
    return selector


def classify_candidate(data: dict):
    """Turn raw candidate data into a ClickableElement, or None if excluded."""
    if not data.get('visible'):
        return None
    if is_native_button(data) and data.get('disabled'):
        return None

    reasons = interactive_reasons(data)
    if not reasons:
        return None

    return ClickableElement(
        selector=build_robust_selector(data),
        type=element_type(data.get('tag', '')),
        text=data.get('text') or '',
        is_visible=True,
        href=data.get('href') or None,
        is_interactive=True,
        interactive_reasons=reasons,
    )


async def find_clickable_elements(page: Page) -> list[ClickableElement]:
    """Return the visible, interactive elements of the current page.

    When several elements derive the same selector, later ones get a
    ``>> nth=<k>`` suffix so each resolves to its own node.
    """
    try:
        candidates = await page.evaluate(_COLLECT_CANDIDATES_JS, CANDIDATE_SELECTOR)
    except Exception as exc:
        log.debug('Candidate collection failed: %s', exc)
        return []

    elements = []
    seen_selectors = Counter()
    for data in candidates or []:
        element = classify_candidate(data)
        if element is None:
            continue
        occurrence = seen_selectors[element.selector]
        seen_selectors[element.selector] += 1
        if occurrence:
            element.selector = f'{element.selector} >> nth={occurrence}'
        elements.append(element)

    log.debug('Classified %d interactive elements out of %d candidates', len(elements), len(candidates or []))
    return elements
