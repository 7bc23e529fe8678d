"""robots.txt policy, fetched once per origin through the browser context."""

import logging
from urllib.robotparser import RobotFileParser

from playwright.async_api import BrowserContext

from .url_utils import parse_absolute_url

log = logging.getLogger(__name__)

USER_AGENT = '*'


class RobotsPolicy:
    """Answers can_fetch() per URL; origins without a usable robots.txt allow all."""

    def __init__(self, context: BrowserContext, timeout_ms: int = 5000, user_agent: str = USER_AGENT):
        self.context = context
        self.timeout_ms = timeout_ms
        self.user_agent = user_agent
        self._parsers: dict = {}

    async def can_fetch(self, url: str) -> bool:
        parts = parse_absolute_url(url)
        if parts is None:
            return True
        origin = f'{parts.scheme}://{parts.netloc}'
        if origin not in self._parsers:
            self._parsers[origin] = await self._load(origin)
        parser = self._parsers[origin]
        return parser is None or parser.can_fetch(self.user_agent, url)

    async def _load(self, origin: str):
        robots_url = f'{origin}/robots.txt'
        try:
            response = await self.context.request.get(robots_url, timeout=self.timeout_ms)
            if response.status != 200:
                log.info('No robots.txt found at %s (status: %d)', robots_url, response.status)
                return None
            content = await response.text()
        except Exception as exc:
            log.warning('Could not load robots.txt from %s: %s', robots_url, exc)
            return None

        parser = RobotFileParser()
        parser.set_url(robots_url)
        parser.parse(content.splitlines())
        log.info('Loaded robots.txt from %s', robots_url)
        return parser
