"""URL helpers: scope checks, tracker skipping and coarse URL keys."""

import logging
from typing import Optional
from urllib.parse import urlsplit, urlunsplit, SplitResult

from .patterns import DEFAULT_PORTS, SKIP_DOMAINS

log = logging.getLogger(__name__)


def parse_absolute_url(url: str) -> Optional[SplitResult]:
    """Split an absolute URL, or return None if it does not parse as one."""
    try:
        parts = urlsplit(url)
        # Accessing .port validates it.
        parts.port
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc or not parts.hostname:
        return None
    return parts


def canonical_netloc(parts: SplitResult) -> str:
    """Rebuild the netloc with a lower-cased host and no default port."""
    host = parts.hostname or ''
    if ':' in host:
        host = f'[{host}]'
    userinfo = ''
    if parts.username is not None:
        userinfo = parts.username
        if parts.password is not None:
            userinfo += f':{parts.password}'
        userinfo += '@'
    port = parts.port
    if port is not None and DEFAULT_PORTS.get(parts.scheme.lower()) != port:
        return f'{userinfo}{host}:{port}'
    return f'{userinfo}{host}'


def is_url_allowed(url: str, allowed_domains: list) -> bool:
    """Exact host match, www. prefix, or any subdomain of an allowed domain."""
    parts = parse_absolute_url(url)
    if parts is None:
        return False
    hostname = parts.hostname
    for domain in allowed_domains:
        domain = domain.lower()
        if hostname == domain or hostname == f'www.{domain}' or hostname.endswith(f'.{domain}'):
            return True
    return False


def should_process_url(url: str, allowed_domains: list) -> bool:
    """Check protocol, tracker hosts and domain scope for a followable URL."""
    if not url.startswith(('http://', 'https://')):
        return False
    parts = parse_absolute_url(url)
    if parts is None:
        return False
    if any(skip in parts.hostname for skip in SKIP_DOMAINS):
        log.debug('Skipping tracker URL: %s', url)
        return False
    return is_url_allowed(url, allowed_domains)


def strip_query_and_fragment(url: str) -> str:
    """Coarse URL key: drop query string and fragment only."""
    parts = parse_absolute_url(url)
    if parts is None:
        return url
    return urlunsplit((parts.scheme.lower(), canonical_netloc(parts), parts.path or '/', '', ''))
