# modules/pararius_contact/lib/__init__.py
from __future__ import annotations

# Re-export commonly-used types for convenience
from .config import ConfigError, Settings
from .coordinator import run_once
from .discovery import DiscoveryFailure, discover
from .models import ContactFormState, ListingSnapshot, Outcome, Reason, Stage, TickSummary, WorkflowResult
from .store import DedupStore, PersistenceFailure, open_store
from .workflow import ContactWorkflow, RunInterrupted

__all__ = [
    "ConfigError",
    "ContactFormState",
    "ContactWorkflow",
    "DedupStore",
    "DiscoveryFailure",
    "ListingSnapshot",
    "Outcome",
    "PersistenceFailure",
    "Reason",
    "RunInterrupted",
    "Settings",
    "Stage",
    "TickSummary",
    "WorkflowResult",
    "discover",
    "open_store",
    "run_once",
]
