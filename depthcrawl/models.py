"""Data classes used throughout the crawler.

All structured types for classified elements, interaction outcomes, forms
and per-page reports live here so they can be imported cleanly by every
other module.
"""

from dataclasses import dataclass, field
from typing import Optional, Union


@dataclass
class ClickableElement:
    """An element judged interactive on the live page.

    Recomputed on every classification pass; never reused across page loads.
    """
    selector: str
    type: str                   # button, link, div, span, other
    text: str
    is_visible: bool = True
    href: Optional[str] = None
    is_interactive: bool = True
    interactive_reasons: list = field(default_factory=list)

    @property
    def identity_key(self) -> str:
        """Dedup key: type|text|selector|reasons, empty parts dropped."""
        parts = [
            self.type,
            self.text,
            self.selector,
            ','.join(self.interactive_reasons),
        ]
        return '|'.join(part for part in parts if part)


@dataclass
class AjaxTiming:
    """Wall-clock timing of one XHR/fetch exchange, in epoch milliseconds."""
    started: float
    completed: float
    duration: float


@dataclass
class AjaxResponse:
    """An XHR/fetch response observed after an interaction."""
    url: str
    status: Optional[int] = None
    content: Optional[str] = None
    timing: Optional[AjaxTiming] = None


# ---------------------------------------------------------------------------
# Interaction outcomes. Exactly one variant describes each interaction.
# ---------------------------------------------------------------------------

@dataclass
class InteractionResult:
    """Base for the outcome of a single element interaction."""
    element: ClickableElement

    kind = 'result'
    success = False


@dataclass
class InteractionSuccess(InteractionResult):
    """The click landed and the page was re-classified in place."""
    dynamic_changes_detected: bool = False
    new_elements_found: list = field(default_factory=list)  # List[ClickableElement]
    ajax_responses: list = field(default_factory=list)      # List[AjaxResponse]

    kind = 'success'
    success = True


@dataclass
class NavigationSuccess(InteractionResult):
    """The click navigated away; the crawler came back to the start URL."""
    new_url: str = ''
    skipped_due_to_scope: bool = False
    returned_to_previous_page: bool = False
    ajax_responses: list = field(default_factory=list)

    kind = 'navigation'
    success = True


@dataclass
class SkippedDueToScope(InteractionResult):
    """The interaction was not attempted (out of scope or already done)."""
    reason: str = ''

    kind = 'skipped'


@dataclass
class InteractionFailure(InteractionResult):
    """The interaction was attempted and could not be completed."""
    reason: str = ''

    kind = 'failure'


InteractionOutcome = Union[InteractionSuccess, NavigationSuccess, SkippedDueToScope, InteractionFailure]


# ---------------------------------------------------------------------------
# Forms
# ---------------------------------------------------------------------------

@dataclass
class FormField:
    """Descriptive view of one form control."""
    type: str
    name: str = ''
    required: bool = False
    placeholder: str = ''


@dataclass
class FormDescriptor:
    """A form found on a page, with a stable identifier."""
    identifier: str
    action: str = ''
    method: str = 'get'
    fields: list = field(default_factory=list)  # List[FormField]


@dataclass
class FormInteractionResult:
    """Outcome of filling and submitting one form."""
    form_id: str
    success: bool
    fields: list = field(default_factory=list)  # names of the fields handled
    error: Optional[str] = None
    skipped: bool = False
    skipped_reason: Optional[str] = None
    ajax: bool = False
    debug: dict = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Page analysis and crawl reporting
# ---------------------------------------------------------------------------

@dataclass
class PageSummary:
    """Links and form identifiers extracted from a loaded page."""
    links: list = field(default_factory=list)
    forms: list = field(default_factory=list)


@dataclass
class PageReport:
    """Everything the engine learned while processing one frontier URL."""
    url: str
    depth: int
    title: str = ''
    links_found: int = 0
    forms_found: int = 0
    clickable_found: int = 0
    form_results: list = field(default_factory=list)         # List[FormInteractionResult]
    interaction_results: list = field(default_factory=list)  # List[InteractionResult]
    skipped_reason: Optional[str] = None
    error: Optional[str] = None
