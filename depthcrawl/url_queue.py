"""URL frontier: canonical URLs, pending/visited bookkeeping and crawl caps."""

import logging
from collections import Counter
from typing import Optional
from urllib.parse import parse_qsl, urlencode

from .patterns import DEFAULT_DOCUMENT_RE, REPEATED_SEPARATOR_RE
from .url_utils import canonical_netloc, parse_absolute_url

log = logging.getLogger(__name__)


class UrlQueue:
    """Pending and visited URL sets for one crawl.

    A URL lives in at most one of the two sets. All checks and updates run
    without awaiting, so callers on the event loop never see a half-applied
    admission.
    """

    def __init__(
        self,
        max_depth: int,
        max_pages_per_domain: int,
        allowed_domains: list,
        ignore_query_params: bool = False,
        ignore_hash_fragments: bool = False,
    ):
        self.max_depth = max_depth
        self.max_pages_per_domain = max_pages_per_domain
        self.allowed_domains = {domain.lower() for domain in allowed_domains}
        self.ignore_query_params = ignore_query_params
        self.ignore_hash_fragments = ignore_hash_fragments

        # dict keeps insertion order, so it doubles as an ordered set.
        self._queue: dict[str, None] = {}
        self._visited: set[str] = set()
        self._depths: dict[str, int] = {}
        self._visited_paths: set[tuple[str, str]] = set()
        self._domain_counts: Counter = Counter()

    # -----------------------------------------------------------------------
    # Frontier operations
    # -----------------------------------------------------------------------

    def add(self, url: str, depth: int = 0) -> bool:
        """Admit a URL at the given depth. Returns whether it was queued."""
        normalized = self.normalize_url(url)
        if not self._should_process(normalized, depth):
            return False
        self._queue[normalized] = None
        self._depths[normalized] = depth
        log.debug('Queued (depth %d): %s', depth, normalized)
        return True

    def next(self) -> Optional[str]:
        """Pop the oldest pending URL and mark it visited."""
        if not self._queue:
            return None
        url = next(iter(self._queue))
        del self._queue[url]
        self._mark_visited(url)
        return url

    def has_been_visited(self, url: str) -> bool:
        return self.normalize_url(url) in self._visited

    def get_current_depth(self, url: str) -> int:
        return self._depths.get(self.normalize_url(url), 0)

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    @property
    def visited_count(self) -> int:
        return len(self._visited)

    @property
    def visited_urls(self) -> list:
        return sorted(self._visited)

    # -----------------------------------------------------------------------
    # Normalization
    # -----------------------------------------------------------------------

    def normalize_url(self, url: str) -> str:
        """Canonical form used for every frontier comparison.

        Host is lower-cased, repeated and trailing separators are collapsed,
        default documents (index/default.php|html|htm|asp|aspx) fold into
        their directory, query parameters are dropped or sorted by key, and
        the fragment is dropped when configured. Anything that does not parse
        as an absolute URL is returned unchanged.
        """
        parts = parse_absolute_url(url)
        if parts is None:
            return url

        path = REPEATED_SEPARATOR_RE.sub('/', parts.path).rstrip('/')
        while True:
            collapsed = DEFAULT_DOCUMENT_RE.sub('/', path).rstrip('/')
            if collapsed == path:
                break
            path = collapsed

        query = ''
        if not self.ignore_query_params and parts.query:
            params = parse_qsl(parts.query, keep_blank_values=True)
            params.sort(key=lambda item: item[0])
            query = urlencode(params)

        fragment = ''
        if not self.ignore_hash_fragments:
            fragment = parts.fragment.rstrip('/')

        normalized = f'{parts.scheme.lower()}://{canonical_netloc(parts)}{path or "/"}'
        if query:
            normalized += f'?{query}'
        if fragment:
            normalized += f'#{fragment}'
        if normalized.endswith('/'):
            normalized = normalized[:-1]
        return normalized

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _should_process(self, normalized: str, depth: int) -> bool:
        if normalized in self._visited or normalized in self._queue:
            return False
        if depth > self.max_depth:
            return False

        parts = parse_absolute_url(normalized)
        if parts is None:
            return False
        host = parts.hostname
        if host not in self.allowed_domains:
            return False

        # Same path already crawled under a different query string.
        if (host, parts.path or '/') in self._visited_paths:
            return False

        return self._domain_counts[host] < self.max_pages_per_domain

    def _mark_visited(self, normalized: str) -> None:
        self._visited.add(normalized)
        parts = parse_absolute_url(normalized)
        if parts is None:
            return
        self._visited_paths.add((parts.hostname, parts.path or '/'))
        self._domain_counts[parts.hostname] += 1
