"""Depth crawler – core package.

Re-exports all public symbols so consumers can do:
    from depthcrawl import CrawlerEngine, load_config
"""

# Models
from .models import (  # noqa: F401
    ClickableElement,
    AjaxTiming,
    AjaxResponse,
    InteractionResult,
    InteractionSuccess,
    NavigationSuccess,
    SkippedDueToScope,
    InteractionFailure,
    InteractionOutcome,
    FormField,
    FormDescriptor,
    FormInteractionResult,
    PageSummary,
    PageReport,
)

# Configuration
from .config import (  # noqa: F401
    DEFAULT_CONFIG_PATH,
    ConfigError,
    CrawlerConfig,
    ProxyConfig,
    load_config,
)

# URL utilities and frontier
from .url_utils import (  # noqa: F401
    is_url_allowed,
    should_process_url,
    strip_query_and_fragment,
)
from .url_queue import UrlQueue  # noqa: F401

# Ledger
from .tracker import FormTracker, InteractionTracker  # noqa: F401

# Page inspection
from .page_analyzer import analyze_page  # noqa: F401
from .element_finder import find_clickable_elements  # noqa: F401
from .observers import AjaxMonitor, ChangeObserver, wait_for_framework_load  # noqa: F401

# Interactions
from .element_interactor import ElementInteractor, InteractionOptions  # noqa: F401
from .form_handler import FormHandler  # noqa: F401

# Reporting
from .reporting import (  # noqa: F401
    build_crawl_summary,
    write_crawl_summary,
    format_crawl_summary,
)

# Engine
from .robots import RobotsPolicy  # noqa: F401
from .engine import CrawlerEngine  # noqa: F401
