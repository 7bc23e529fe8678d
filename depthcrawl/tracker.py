"""Interaction ledger: which forms, elements and pages were already acted upon.

Every set here is append-only for the lifetime of one crawl. Instances are
created by the engine and passed to each component; there is no module-level
state, so independent crawls in one process do not share a ledger.
"""

from .url_utils import strip_query_and_fragment


class FormTracker:
    """Form half of the ledger: url#formIdentifier keys."""

    def __init__(self):
        self._interacted_forms: set[str] = set()
        self._form_identifiers: set[str] = set()
        self._interacted_urls: set[str] = set()

    def add_interacted_form(self, form_identifier: str, url: str) -> None:
        self._interacted_forms.add(self._unique_form_id(form_identifier, url))
        self._form_identifiers.add(_bare_identifier(form_identifier))
        self._interacted_urls.add(url)

    def has_been_interacted(self, form_identifier: str, url: str) -> bool:
        """Exact (url, form) match only."""
        return self._unique_form_id(form_identifier, url) in self._interacted_forms

    def has_identifier_been_interacted(self, form_identifier: str) -> bool:
        """Same form identifier recorded on any URL."""
        return _bare_identifier(form_identifier) in self._form_identifiers

    def has_url_been_interacted(self, url: str) -> bool:
        return url in self._interacted_urls

    @property
    def interacted_forms_count(self) -> int:
        return len(self._interacted_forms)

    @property
    def interacted_urls_count(self) -> int:
        return len(self._interacted_urls)

    @staticmethod
    def _unique_form_id(form_identifier: str, url: str) -> str:
        return f'{url}#{form_identifier}'


def _bare_identifier(form_identifier: str) -> str:
    return form_identifier.replace('<', '').replace('>', '')


class InteractionTracker:
    """Dedup record of submitted forms, clicked elements and processed pages."""

    def __init__(self, form_tracker: FormTracker = None):
        self.forms = form_tracker or FormTracker()
        self._interacted_elements: set[str] = set()
        self._visited_urls: set[str] = set()

    # Forms

    def add_interacted_form(self, form_identifier: str, url: str) -> None:
        """Record a submitted form; the page also counts as processed."""
        self.forms.add_interacted_form(form_identifier, url)
        self.add_visited_url(url)

    def has_form_been_interacted(self, form_identifier: str, url: str) -> bool:
        """True for the exact (url, form) pair or the same form on any page.

        Form templates repeat across pages, so an identifier seen anywhere
        counts as done.
        """
        if self.forms.has_been_interacted(form_identifier, url):
            return True
        return self.forms.has_identifier_been_interacted(form_identifier)

    # Elements

    def add_interacted_element(self, element_key: str) -> None:
        self._interacted_elements.add(element_key)

    def has_element_been_interacted(self, element_key: str) -> bool:
        return element_key in self._interacted_elements

    # Pages

    def add_visited_url(self, url: str) -> None:
        self._visited_urls.add(strip_query_and_fragment(url))

    def has_url_been_visited(self, url: str) -> bool:
        return strip_query_and_fragment(url) in self._visited_urls

    def get_stats(self) -> dict:
        return {
            'forms_count': self.forms.interacted_forms_count,
            'elements_count': len(self._interacted_elements),
            'urls_count': len(self._visited_urls),
        }
