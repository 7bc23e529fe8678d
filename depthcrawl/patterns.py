"""Pre-compiled pattern tables and constant lookup tables.

Holds the candidate selector set used by element classification, the URL
normalization patterns, scope skip lists and the synthetic form fill values.
"""

import re


# ---------------------------------------------------------------------------
# Element classification
# ---------------------------------------------------------------------------

# Priority-ordered candidate selectors for potentially interactive elements.
CANDIDATE_SELECTORS = [
    'a[href]',
    'button:not([disabled])',
    'input[type="button"]:not([disabled])',
    'input[type="submit"]:not([disabled])',
    '[role="button"]',
    '[role="link"]',
    '[role="tab"]',
    '[role="menuitem"]',
    '[onclick]',
    '[tabindex]',
    '[data-testid]',
    '[data-qa]',
    '[data-cy]',
]

CANDIDATE_SELECTOR = ','.join(CANDIDATE_SELECTORS)

INTERACTIVE_ROLES = ('button', 'link', 'tab', 'menuitem')

NON_NAVIGABLE_HREF_PREFIXES = ('mailto:', 'tel:')

# Longest text kept in a text-based selector.
MAX_SELECTOR_TEXT = 80


# ---------------------------------------------------------------------------
# URL normalization and scope
# ---------------------------------------------------------------------------

DEFAULT_DOCUMENT_RE = re.compile(r'/(index|default)\.(php|html|htm|asp|aspx)$', re.IGNORECASE)
REPEATED_SEPARATOR_RE = re.compile(r'/+')

DEFAULT_PORTS = {'http': 80, 'https': 443}

# Hosts never worth following (analytics and social trackers).
SKIP_DOMAINS = [
    'google-analytics.com',
    'doubleclick.net',
    'facebook.com',
    'linkedin.com',
    'twitter.com',
    'analytics',
]

# Hrefs that look like AJAX endpoints are never scope-skipped.
AJAX_URL_RE = re.compile(r'ajax', re.IGNORECASE)

SCRIPT_HREF_PREFIX = 'javascript:'


# ---------------------------------------------------------------------------
# Framework detection (observation roots and overlays)
# ---------------------------------------------------------------------------

FRAMEWORK_ROOTS = {
    'react': '[data-reactroot], [data-react-helmet], #root, #app',
    'vue': '[data-v-app], #app, #__nuxt, #__next',
    'angular': '[ng-version]',
}

# Known fixed navigation overlay that swallows clicks.
INTERCEPTING_OVERLAY_SELECTOR = '.nav-area .container-fluid'

LOADING_INDICATOR_SELECTOR = '.loading, .spinner, .loader, [aria-busy="true"], [aria-loading="true"]'


# ---------------------------------------------------------------------------
# Form filling
# ---------------------------------------------------------------------------

FIELD_FILL_VALUES = {
    'email': 'test@example.com',
    'password': 'DummyPassword123!',
    'tel': '1234567890',
    'number': '42',
    'textarea': 'Test Message Content',
    'date': '2024-01-01',
    'url': 'https://example.com',
}

DEFAULT_FILL_VALUE = 'Test Input'

# Controls that are never filled.
SKIPPED_FIELD_TYPES = {'submit', 'button', 'image', 'reset'}

CHECKABLE_FIELD_TYPES = {'checkbox', 'radio'}

FORM_BATCH_SIZE = 3
