"""Form discovery, synthetic filling and submission.

Each form is submitted from its own freshly opened page so a navigating
submission never disturbs the caller's live page. Forms are processed in
small concurrent batches.
"""

import asyncio
import logging
from typing import Optional

from playwright.async_api import ElementHandle, Error as PlaywrightError, Page, TimeoutError as PlaywrightTimeout

from .models import FormDescriptor, FormField, FormInteractionResult
from .patterns import (
    CHECKABLE_FIELD_TYPES,
    DEFAULT_FILL_VALUE,
    FIELD_FILL_VALUES,
    FORM_BATCH_SIZE,
    SKIPPED_FIELD_TYPES,
)
from .tracker import InteractionTracker

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# JS snippets
# ---------------------------------------------------------------------------

_DESCRIBE_FORMS_JS = '''
() => Array.from(document.querySelectorAll('form')).map((form, index) => {
    const submit = form.querySelector('input[type="submit"], button[type="submit"]');
    return {
        index,
        id: form.getAttribute('id') || '',
        name: form.getAttribute('name') || '',
        action: form.getAttribute('action') || '',
        method: form.getAttribute('method') || 'get',
        html: form.outerHTML,
        submitButton: submit ? submit.tagName.toLowerCase() : null,
        fields: Array.from(form.querySelectorAll('input, textarea, select')).map(input => ({
            type: input.getAttribute('type') || input.tagName.toLowerCase(),
            name: input.getAttribute('name') || '',
            required: input.hasAttribute('required'),
            placeholder: input.getAttribute('placeholder') || ''
        }))
    };
})
'''

_FIELD_INFO_JS = '''
(el) => ({
    type: (el.getAttribute('type') || el.tagName).toLowerCase(),
    name: el.getAttribute('name') || ''
})
'''

_SET_VALUE_JS = '(el, value) => { el.value = value; }'

_SET_CHECKED_JS = '(el) => { el.checked = true; }'

_OPTION_VALUES_JS = 'el => Array.from(el.options).map(o => o.value).filter(v => v)'

_IS_AJAX_FORM_JS = '''
(form) => {
    const handler = form.onsubmit ? form.onsubmit.toString() : '';
    const remote = form.hasAttribute('data-remote')
        || (form.getAttribute('data-ajax') || '').toLowerCase() === 'true';
    return handler.includes('preventDefault') || remote;
}
'''

_SUBMIT_FORM_JS = '''
(form) => {
    const submit = form.querySelector('input[type="submit"], button[type="submit"]');
    if (submit) {
        submit.click();
    } else {
        form.submit();
    }
}
'''


def _quote(value: str) -> str:
    return value.replace('\\', '\\\\').replace('"', '\\"')


def form_identity(details: dict) -> str:
    """id, then name, then a method/action composite."""
    return (
        details.get('id')
        or details.get('name')
        or f"<unnamed_form_{details.get('method', 'get')}_{details.get('action', '')}>"
    )


def relocation_selectors(details: dict) -> list:
    """Selectors that find the same form on a fresh copy of the page."""
    selectors = []
    if details.get('id'):
        selectors.append(f'form[id="{_quote(details["id"])}"]')
    if details.get('name'):
        selectors.append(f'form[name="{_quote(details["name"])}"]')
    if details.get('action'):
        selectors.append(f'form[action="{_quote(details["action"])}"]')
    return selectors


# ---------------------------------------------------------------------------
# Form handler
# ---------------------------------------------------------------------------

class FormHandler:
    """Fills and submits every form of a page once per crawl."""

    def __init__(
        self,
        tracker: InteractionTracker,
        timeout_ms: int = 30000,
        response_timeout_ms: int = 5000,
        batch_size: int = FORM_BATCH_SIZE,
    ):
        self.tracker = tracker
        self.timeout_ms = timeout_ms
        self.response_timeout_ms = response_timeout_ms
        self.batch_size = batch_size

    async def find_and_analyze_forms(self, page: Page) -> list[FormDescriptor]:
        """Describe each form on the page and its fields, without touching them."""
        return [_descriptor(details) for details in await self._describe_forms(page)]

    async def interact_with_forms(self, page: Page) -> list[FormInteractionResult]:
        current_url = page.url

        if self.tracker.has_url_been_visited(current_url):
            log.info('Skipping already processed URL: %s', current_url)
            return [FormInteractionResult(
                form_id='page_forms',
                success=True,
                skipped=True,
                skipped_reason='URL already processed',
            )]

        forms = await self._describe_forms(page)
        log.info('Found %d forms on page %s', len(forms), current_url)

        results = []
        in_flight: set[str] = set()
        for start in range(0, len(forms), self.batch_size):
            batch = forms[start:start + self.batch_size]
            log.info('Processing batch of forms (%d-%d of %d)', start + 1, start + len(batch), len(forms))
            results.extend(await asyncio.gather(*(
                self._process_form(page, current_url, details, len(forms), in_flight)
                for details in batch
            )))

        log.info('Completed %d forms: %d succeeded, %d skipped',
                 len(results),
                 sum(1 for r in results if r.success and not r.skipped),
                 sum(1 for r in results if r.skipped))
        return results

    # -----------------------------------------------------------------------
    # One form
    # -----------------------------------------------------------------------

    async def _process_form(
        self,
        page: Page,
        current_url: str,
        details: dict,
        form_count: int,
        in_flight: set,
    ) -> FormInteractionResult:
        form_id = form_identity(details)
        debug = {'form_index': details.get('index', 0) + 1, 'form_count': form_count}

        # Check and claim without an await in between.
        if form_id in in_flight or self.tracker.has_form_been_interacted(form_id, current_url):
            log.info('Skipping already processed form: %s', form_id)
            return FormInteractionResult(
                form_id=form_id,
                success=True,
                skipped=True,
                skipped_reason='Form already processed',
                debug={**debug, 'form_details': _public_details(details)},
            )
        in_flight.add(form_id)

        result = None
        try:
            result = await self._submit_in_isolation(page, current_url, details, form_id, debug)
        except Exception as exc:
            log.error('Error processing form %s: %s', form_id, exc)
            result = FormInteractionResult(form_id=form_id, success=False, error=str(exc), debug=debug)
        finally:
            # A failed form leaves its identifier free for a later twin.
            if result is None or not result.success:
                in_flight.discard(form_id)
        return result

    async def _submit_in_isolation(
        self,
        page: Page,
        current_url: str,
        details: dict,
        form_id: str,
        debug: dict,
    ) -> FormInteractionResult:
        form_page = await page.context.new_page()
        try:
            log.debug('Opening new page for form %s', form_id)
            try:
                await form_page.goto(current_url, wait_until='networkidle', timeout=self.timeout_ms)
            except PlaywrightTimeout:
                log.warning('Form page load timed out for %s - proceeding anyway', current_url)

            form = await self._relocate(form_page, details)
            if form is None:
                raise RuntimeError('Could not find corresponding form in new page')

            fields = await form.query_selector_all('input, textarea, select')
            field_names = [await self._fill_field(field) for field in fields]

            is_ajax = bool(await form.evaluate(_IS_AJAX_FORM_JS))
            log.info('Form %s is %s form', form_id, 'an AJAX' if is_ajax else 'a traditional')
            await self._submit(form_page, form, details, current_url, is_ajax)
        finally:
            await form_page.close()
            log.debug('Closed form page for %s', form_id)

        self.tracker.add_interacted_form(form_id, current_url)
        log.info('Successfully processed form %s', form_id)
        return FormInteractionResult(
            form_id=form_id,
            success=True,
            fields=field_names,
            ajax=is_ajax,
            debug={
                **debug,
                'form_details': _public_details(details),
                'form_html': details.get('html', ''),
                'fields_found': len(fields),
                'submit_button_found': details.get('submitButton') is not None,
                'submit_button_type': details.get('submitButton') or 'none',
            },
        )

    async def _relocate(self, form_page: Page, details: dict) -> Optional[ElementHandle]:
        for selector in relocation_selectors(details):
            form = await form_page.query_selector(selector)
            if form is not None:
                return form
        forms = await form_page.query_selector_all('form')
        index = details.get('index', 0)
        return forms[index] if index < len(forms) else None

    async def _fill_field(self, field: ElementHandle) -> str:
        """Fill one control with a synthetic value; returns its name."""
        info = await field.evaluate(_FIELD_INFO_JS)
        field_type, name = info['type'], info['name']
        if field_type in SKIPPED_FIELD_TYPES:
            return name

        visible = await field.is_visible()
        try:
            if field_type == 'hidden':
                await field.evaluate(_SET_VALUE_JS, DEFAULT_FILL_VALUE)
            elif field_type in CHECKABLE_FIELD_TYPES:
                if visible:
                    await field.check()
                else:
                    await field.evaluate(_SET_CHECKED_JS)
            elif field_type == 'select':
                await self._choose_option(field, visible)
            else:
                value = FIELD_FILL_VALUES.get(field_type, DEFAULT_FILL_VALUE)
                if visible:
                    await field.fill(value)
                else:
                    await field.evaluate(_SET_VALUE_JS, value)
        except Exception as exc:
            log.debug('Error handling field %s (%s): %s', name, field_type, exc)
        return name

    async def _choose_option(self, field: ElementHandle, visible: bool) -> None:
        values = await field.evaluate(_OPTION_VALUES_JS)
        if not values:
            return
        if visible:
            await field.select_option(values[0])
        else:
            await field.evaluate(_SET_VALUE_JS, values[0])

    async def _submit(
        self,
        form_page: Page,
        form: ElementHandle,
        details: dict,
        current_url: str,
        is_ajax: bool,
    ) -> None:
        action = details.get('action') or ''

        def matches_form(response) -> bool:
            return current_url in response.url or bool(action and action in response.url)

        try:
            if is_ajax:
                async with form_page.expect_response(matches_form, timeout=self.response_timeout_ms):
                    await self._trigger_submit(form)
            else:
                async with form_page.expect_navigation(wait_until='networkidle', timeout=self.timeout_ms):
                    await self._trigger_submit(form)
        except PlaywrightTimeout:
            log.info('%s wait timed out after submit', 'Response' if is_ajax else 'Navigation')

    async def _trigger_submit(self, form: ElementHandle) -> None:
        try:
            await form.evaluate(_SUBMIT_FORM_JS)
        except PlaywrightError as exc:
            # The submit can tear down the execution context mid-call.
            log.debug('Submit evaluate interrupted: %s', exc)

    async def _describe_forms(self, page: Page) -> list:
        try:
            return await page.evaluate(_DESCRIBE_FORMS_JS) or []
        except Exception as exc:
            log.debug('Form discovery failed: %s', exc)
            return []


def _descriptor(details: dict) -> FormDescriptor:
    return FormDescriptor(
        identifier=form_identity(details),
        action=details.get('action', ''),
        method=details.get('method', 'get'),
        fields=[FormField(**field) for field in details.get('fields', [])],
    )


def _public_details(details: dict) -> dict:
    return {key: details.get(key) for key in ('id', 'name', 'action', 'method')}
