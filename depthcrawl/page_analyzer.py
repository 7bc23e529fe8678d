"""Page analysis: hyperlinks and form identifiers of a loaded page."""

import logging

from playwright.async_api import Page

from .models import PageSummary

log = logging.getLogger(__name__)


_LINKS_JS = '''
() => Array.from(document.querySelectorAll('a[href]')).map(a => a.href)
'''

_FORM_IDS_JS = '''
() => Array.from(document.querySelectorAll('form')).map(form =>
    form.getAttribute('id') || form.getAttribute('name') || '<unnamed_form>'
)
'''


async def analyze_page(page: Page) -> PageSummary:
    """Extract all anchor hrefs (absolute) and form identifiers."""
    try:
        links = await page.evaluate(_LINKS_JS)
    except Exception as exc:
        log.debug('Link extraction failed: %s', exc)
        links = []

    try:
        forms = await page.evaluate(_FORM_IDS_JS)
    except Exception as exc:
        log.debug('Form extraction failed: %s', exc)
        forms = []

    return PageSummary(links=[link for link in links if link], forms=forms)
