from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum


class Outcome(str, Enum):
    """Terminal outcome of one workflow invocation."""

    HANDLED = "handled"  # record it; never process again
    PROCESSING_FAILURE = "processing_failure"  # leave unrecorded; retried next tick


class Stage(str, Enum):
    """Workflow stages, in execution order."""

    OPEN = "open"
    DATE_CHECK = "date_check"
    CONSENT_DISMISS = "consent_dismiss"
    LOCATE_CONTACT = "locate_contact"
    ACTIVATE = "activate"
    LOCATE_SEND = "locate_send"
    FILL_FIELDS = "fill_fields"
    SUBMIT = "submit"


class Reason(str, Enum):
    """Why a workflow ended where it did."""

    DATE_BEFORE_CUTOFF = "date_before_cutoff"
    DATE_UNAVAILABLE = "date_unavailable"
    NO_CONTACT_ACTION = "no_contact_action"
    NO_SEND_ACTION = "no_send_action"
    SUBMITTED = "submitted"
    SESSION_UNAVAILABLE = "session_unavailable"
    NAVIGATION_FAILED = "navigation_failed"
    UNEXPECTED_ERROR = "unexpected_error"


@dataclass
class ListingSnapshot:
    """
    Transient per-run view of one listing.
    Only the id is persisted (via the dedup store); the date is informational.
    """

    listing_id: str
    offered_since: date | None = None


@dataclass
class ContactFormState:
    """
    Scratch state for one workflow invocation. Never persisted; it is only
    copied into the activity log record for the listing.
    """

    contact_located: bool = False
    contact_locator: str | None = None
    send_located: bool = False
    filled: list[str] = field(default_factory=list)  # fields we typed into
    already_filled: list[str] = field(default_factory=list)  # non-empty or hidden
    missing: list[str] = field(default_factory=list)  # not on the page
    field_errors: dict[str, str] = field(default_factory=dict)
    submitted: bool = False

    def as_record(self) -> dict:
        return {
            "contact_located": self.contact_located,
            "contact_locator": self.contact_locator,
            "send_located": self.send_located,
            "filled": list(self.filled),
            "already_filled": list(self.already_filled),
            "missing": list(self.missing),
            "field_errors": dict(self.field_errors),
            "submitted": self.submitted,
        }


@dataclass
class WorkflowResult:
    listing_id: str
    outcome: Outcome
    reason: Reason
    stage: Stage
    snapshot: ListingSnapshot
    form: ContactFormState = field(default_factory=ContactFormState)
    error: str | None = None

    @property
    def handled(self) -> bool:
        return self.outcome is Outcome.HANDLED


@dataclass
class TickSummary:
    """
    Result bundle produced by one coordinator tick.
    - results: one WorkflowResult per listing the workflow ran for, in order.
    """

    candidates: int = 0
    already_seen: int = 0
    results: list[WorkflowResult] = field(default_factory=list)
    recorded: list[str] = field(default_factory=list)
    interrupted: bool = False
    skipped_network: bool = False
    total_us: int = 0

    @property
    def handled(self) -> int:
        return sum(1 for r in self.results if r.handled)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.handled)

    def by_reason(self) -> dict[str, int]:
        out: dict[str, int] = {}
        for r in self.results:
            out[r.reason.value] = out.get(r.reason.value, 0) + 1
        return out
