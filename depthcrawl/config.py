"""Crawler configuration: pydantic model, JSON loading and validation.

Keys in the JSON file are camelCase (``startUrl``, ``maxDepth``...); the
model exposes them as snake_case attributes.
"""

import json
import logging
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .url_utils import parse_absolute_url

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / 'default_config.json'


class ConfigError(ValueError):
    """Raised when a configuration file cannot be loaded or is invalid."""


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='ignore')


class ProxyConfig(_CamelModel):
    """Upstream proxy for the browser."""
    server: str
    ignore_https_errors: bool = Field(False, alias='ignoreHTTPSErrors')


class CrawlerConfig(_CamelModel):
    """Everything one crawl needs. Timings are in milliseconds."""

    # Core crawling parameters
    start_url: str
    allowed_domains: list[str]
    max_depth: int = Field(gt=0)
    max_pages_per_domain: int = Field(gt=0)

    # Browser behaviour
    headless: bool = True
    timeout: int = Field(gt=0)
    framework_timeout: int = Field(2000, gt=0)
    retry_delay: int = Field(100, gt=0)
    network_idle_time: int = Field(300, gt=0)

    # URL handling
    ignore_hash_fragments: bool = True
    ignore_query_params: bool = False
    respect_robots_txt: bool = False

    # Rate limiting
    request_delay: int = Field(0, ge=0)
    max_concurrent_requests: int = Field(3, gt=0)
    concurrency_mode: str = 'sequential'

    # Output and logging
    output_dir: str = 'output'
    save_screenshots: bool = False
    log_level: Literal['debug', 'info', 'warn', 'error'] = 'info'

    # Interaction settings
    interact_with_forms: bool = True
    interact_with_elements: bool = True
    max_dynamic_depth: int = Field(10, gt=0)
    always_process_query_urls: bool = True
    form_response_timeout: int = Field(5000, gt=0)

    proxy: Optional[ProxyConfig] = None

    @field_validator('start_url')
    @classmethod
    def _check_start_url(cls, value: str) -> str:
        parts = parse_absolute_url(value)
        if parts is None or parts.scheme.lower() not in ('http', 'https'):
            raise ValueError('Invalid startUrl')
        return value

    @field_validator('allowed_domains')
    @classmethod
    def _check_allowed_domains(cls, value: list) -> list:
        if not value:
            raise ValueError('allowedDomains must not be empty')
        return value


def load_config(config_path) -> CrawlerConfig:
    """Load and validate a crawler configuration from a JSON file.

    Raises:
        ConfigError: the file is unreadable, not JSON, or fails validation.
    """
    path = Path(config_path)
    try:
        raw = json.loads(path.read_text(encoding='utf-8'))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f'Failed to load config: {exc}') from exc

    if not isinstance(raw, dict):
        raise ConfigError('Failed to load config: top-level JSON value must be an object')

    try:
        config = CrawlerConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f'Failed to load config: {exc}') from exc

    log.debug('Loaded config from %s', path)
    return config
