"""
Per-listing contact workflow.

One invocation walks an explicit, ordered list of stages against a fresh
browser session:

    open -> date_check -> consent_dismiss -> locate_contact -> activate
         -> locate_send -> fill_fields -> submit

Each stage returns None to continue or a terminal WorkflowResult. Expected
page conditions (missing elements, timeouts) end in Outcome.HANDLED so the
listing is never retried; only a failed navigation or an unexpected error ends
in Outcome.PROCESSING_FAILURE.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from . import cutoff
from .browser import (
    BrowserError,
    BrowserSession,
    ElementUnavailable,
    NavigationFailure,
    SessionFactory,
    SessionUnavailable,
)
from .config import FieldSpec, Settings
from .models import ContactFormState, ListingSnapshot, Outcome, Reason, Stage, WorkflowResult

LOG = logging.getLogger(__name__)


class RunInterrupted(Exception):
    """A stop was requested; the current tick should end without recording."""


@dataclass
class _Attempt:
    """Mutable state threaded through the stages of one invocation."""

    listing_id: str
    snapshot: ListingSnapshot
    form: ContactFormState = field(default_factory=ContactFormState)
    stage: Stage = Stage.OPEN
    session: BrowserSession | None = None
    contact: Any = None  # handle of the located contact control
    send: Any = None  # handle of the located send control


StageHandler = Callable[[_Attempt], "WorkflowResult | None"]


class ContactWorkflow:
    def __init__(
        self,
        settings: Settings,
        session_factory: SessionFactory,
        *,
        sleep: Callable[[float], None] = time.sleep,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self.sleep = sleep
        self.stop_event = stop_event
        self._stages: list[tuple[Stage, StageHandler]] = [
            (Stage.OPEN, self._open),
            (Stage.DATE_CHECK, self._date_check),
            (Stage.CONSENT_DISMISS, self._dismiss_consent),
            (Stage.LOCATE_CONTACT, self._locate_contact),
            (Stage.ACTIVATE, self._activate),
            (Stage.LOCATE_SEND, self._locate_send),
            (Stage.FILL_FIELDS, self._fill_fields),
            (Stage.SUBMIT, self._submit),
        ]

    # ---- Public API ---------------------------------------------------------

    def process(self, listing_id: str) -> WorkflowResult:
        """
        Run all stages for one listing. Never raises except RunInterrupted;
        the session acquired for the listing is always closed.
        """
        attempt = _Attempt(listing_id=listing_id, snapshot=ListingSnapshot(listing_id))
        try:
            for stage, handler in self._stages:
                attempt.stage = stage
                # Once the form is filled, submission goes ahead regardless.
                if stage is not Stage.SUBMIT:
                    self._check_stop(attempt)
                result = handler(attempt)
                if result is not None:
                    return result
            # _submit always returns a terminal result
            raise RuntimeError("workflow ended without a terminal result")
        except RunInterrupted:
            raise
        except Exception as e:
            LOG.warning("Unexpected error at %s for %s: %s", attempt.stage.value, listing_id, e)
            return self._result(attempt, Outcome.PROCESSING_FAILURE, Reason.UNEXPECTED_ERROR, error=e)
        finally:
            if attempt.session is not None:
                try:
                    attempt.session.close()
                except Exception:
                    LOG.warning("Error closing browser session for %s", listing_id, exc_info=True)

    # ---- Stages -------------------------------------------------------------

    def _open(self, a: _Attempt) -> WorkflowResult | None:
        try:
            a.session = self.session_factory()
        except SessionUnavailable as e:
            outcome = Outcome.HANDLED if self.settings.session_failure_handled else Outcome.PROCESSING_FAILURE
            LOG.warning("Browser session unavailable for %s: %s", a.listing_id, e)
            return self._result(a, outcome, Reason.SESSION_UNAVAILABLE, error=e)

        try:
            a.session.navigate(a.listing_id)
        except NavigationFailure as e:
            LOG.warning("Navigation failed for %s: %s", a.listing_id, e)
            return self._result(a, Outcome.PROCESSING_FAILURE, Reason.NAVIGATION_FAILED, error=e)
        return None

    def _date_check(self, a: _Attempt) -> WorkflowResult | None:
        decision = cutoff.evaluate(
            a.session,
            locator=self.settings.offered_since,
            cutoff=self.settings.cutoff_date,
            timeout=self.settings.element_timeout_sec,
        )
        a.snapshot.offered_since = decision.offered_since
        if not decision.proceed:
            return self._result(a, Outcome.HANDLED, decision.reason)
        return None

    def _dismiss_consent(self, a: _Attempt) -> WorkflowResult | None:
        # Best effort: the banner is often absent
        try:
            found = self.settings.consent.first_clickable(a.session, self.settings.element_timeout_sec)
            if found is not None:
                a.session.click(found[0])
                if self.settings.consent_settle_sec > 0:
                    self.sleep(self.settings.consent_settle_sec)
        except BrowserError as e:
            LOG.debug("Consent dismissal skipped for %s: %s", a.listing_id, e)
        return None

    def _locate_contact(self, a: _Attempt) -> WorkflowResult | None:
        found = self.settings.contact.first_clickable(a.session, self.settings.element_timeout_sec)
        if found is None:
            return self._result(a, Outcome.HANDLED, Reason.NO_CONTACT_ACTION)
        a.contact, locator = found
        a.form.contact_located = True
        a.form.contact_locator = str(locator)
        return None

    def _activate(self, a: _Attempt) -> WorkflowResult | None:
        # Failures here propagate to process() as UNEXPECTED_ERROR
        a.session.click(a.contact)
        return None

    def _locate_send(self, a: _Attempt) -> WorkflowResult | None:
        found = self.settings.send.first_clickable(a.session, self.settings.element_timeout_sec)
        if found is None:
            return self._result(a, Outcome.HANDLED, Reason.NO_SEND_ACTION)
        a.send = found[0]
        a.form.send_located = True
        return None

    def _fill_fields(self, a: _Attempt) -> WorkflowResult | None:
        for spec in self.settings.form_fields():
            try:
                self._fill_one(a, spec)
            except Exception as e:
                # One broken field must not stop the others or the submit
                a.form.field_errors[spec.name] = f"{type(e).__name__}: {e}"
                LOG.debug("Field %s failed for %s: %s", spec.name, a.listing_id, e)
        return None

    def _submit(self, a: _Attempt) -> WorkflowResult | None:
        try:
            a.session.click(a.send)
            a.form.submitted = True
        except Exception as e:
            LOG.info("Submit click failed for %s (still handled): %s", a.listing_id, e)
            return self._result(a, Outcome.HANDLED, Reason.SUBMITTED, error=e)
        return self._result(a, Outcome.HANDLED, Reason.SUBMITTED)

    # ---- Helpers ------------------------------------------------------------

    def _fill_one(self, a: _Attempt, spec: FieldSpec) -> None:
        session = a.session
        handle = session.find_element(spec.locator)
        if handle is None:
            a.form.missing.append(spec.name)
            return
        if not session.is_displayed(handle) or not _is_empty(session, handle):
            a.form.already_filled.append(spec.name)
            return
        session.clear(handle)
        session.send_keys(handle, spec.text)
        a.form.filled.append(spec.name)

    def _check_stop(self, a: _Attempt) -> None:
        if self.stop_event is not None and self.stop_event.is_set():
            LOG.info("Stop requested before %s for %s", a.stage.value, a.listing_id)
            raise RunInterrupted(f"stopped before {a.stage.value}")

    @staticmethod
    def _result(
        a: _Attempt,
        outcome: Outcome,
        reason: Reason | None,
        *,
        error: BaseException | None = None,
    ) -> WorkflowResult:
        return WorkflowResult(
            listing_id=a.listing_id,
            outcome=outcome,
            reason=reason or Reason.UNEXPECTED_ERROR,
            stage=a.stage,
            snapshot=a.snapshot,
            form=a.form,
            error=(f"{type(error).__name__}: {error}" if error is not None else None),
        )


def _is_empty(session: BrowserSession, handle: Any) -> bool:
    """Inputs carry their content in `value`; textareas may only expose it as text."""
    value = session.get_attribute(handle, "value") or ""
    if value.strip():
        return False
    try:
        text = session.get_text(handle) or ""
    except ElementUnavailable:
        text = ""
    return not text.strip()
