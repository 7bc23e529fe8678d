"""Crawl summary: JSON report and a short human-readable digest.

The JSON file is written to ``<outputDir>/crawl_summary.json`` at the end of
every crawl that got past configuration.
"""

import json
import logging
from collections import Counter
from datetime import datetime
from pathlib import Path
from urllib.parse import urlparse

from .models import (
    FormInteractionResult,
    InteractionResult,
    PageReport,
)

log = logging.getLogger(__name__)

SUMMARY_FILENAME = 'crawl_summary.json'


def get_short_url(url: str, max_len: int = 50) -> str:
    """Shorten URL for display."""
    path = urlparse(url).path
    if len(path) > max_len:
        path = '...' + path[-(max_len - 3):]
    return path if path else '/'


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _interaction_to_dict(result: InteractionResult) -> dict:
    element = result.element
    data = {
        'kind': result.kind,
        'success': result.success,
        'element': {
            'selector': element.selector,
            'type': element.type,
            'text': element.text,
            'href': element.href,
        },
    }
    for attr in ('reason', 'new_url', 'skipped_due_to_scope', 'returned_to_previous_page',
                 'dynamic_changes_detected'):
        if hasattr(result, attr):
            data[attr] = getattr(result, attr)
    if hasattr(result, 'new_elements_found'):
        data['new_elements_found'] = len(result.new_elements_found)
    if hasattr(result, 'ajax_responses'):
        data['ajax_responses'] = [
            {'url': r.url, 'status': r.status, 'duration': r.timing.duration if r.timing else None}
            for r in result.ajax_responses
        ]
    return data


def _form_to_dict(result: FormInteractionResult) -> dict:
    return {
        'form_id': result.form_id,
        'success': result.success,
        'skipped': result.skipped,
        'skipped_reason': result.skipped_reason,
        'ajax': result.ajax,
        'fields': result.fields,
        'error': result.error,
    }


def _page_to_dict(report: PageReport) -> dict:
    return {
        'url': report.url,
        'depth': report.depth,
        'title': report.title,
        'links_found': report.links_found,
        'forms_found': report.forms_found,
        'clickable_found': report.clickable_found,
        'skipped_reason': report.skipped_reason,
        'error': report.error,
        'forms': [_form_to_dict(r) for r in report.form_results],
        'interactions': [_interaction_to_dict(r) for r in report.interaction_results],
    }


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

def build_crawl_summary(start_url: str, pages: list[PageReport], tracker_stats: dict) -> dict:
    """Assemble the JSON-serialisable crawl summary."""
    outcomes = Counter(r.kind for page in pages for r in page.interaction_results)
    forms = [r for page in pages for r in page.form_results]

    return {
        'meta': {
            'start_url': start_url,
            'domain': urlparse(start_url).netloc,
            'pages_processed': len(pages),
            'timestamp': datetime.now().isoformat(),
        },
        'stats': {
            **tracker_stats,
            'pages_failed': sum(1 for p in pages if p.error),
            'pages_skipped': sum(1 for p in pages if p.skipped_reason),
            'interactions': dict(outcomes),
            'forms_submitted': sum(1 for r in forms if r.success and not r.skipped),
            'forms_failed': sum(1 for r in forms if not r.success),
        },
        'pages': [_page_to_dict(p) for p in pages],
    }


def write_crawl_summary(summary: dict, output_dir) -> Path:
    path = Path(output_dir) / SUMMARY_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(summary, f, indent=2)
    log.info('Crawl summary saved to: %s', path)
    return path


def format_crawl_summary(summary: dict) -> str:
    """A few lines for the console at the end of a crawl."""
    stats = summary['stats']
    interactions = stats.get('interactions', {})
    lines = [
        f"Crawl of {summary['meta']['start_url']} finished",
        f"  Pages processed:   {summary['meta']['pages_processed']}"
        f" ({stats['pages_failed']} failed, {stats['pages_skipped']} skipped)",
        f"  Forms submitted:   {stats['forms_submitted']} ({stats['forms_failed']} failed)",
        f"  Interactions:      {sum(interactions.values())}"
        + (' (' + ', '.join(f'{k}: {v}' for k, v in sorted(interactions.items())) + ')' if interactions else ''),
    ]
    for page in summary['pages']:
        marker = 'x' if page['error'] else '-' if page['skipped_reason'] else '+'
        lines.append(f"  [{marker}] {get_short_url(page['url'])} (depth {page['depth']})")
    return '\n'.join(lines)
