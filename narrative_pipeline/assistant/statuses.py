"""Workflow statuses a control record can occupy.

The ``status`` column is the single source of truth for what happens next.
Every stage writes exactly one of these values before it returns, and the
router maps the value to the stage that resumes the run.
"""

from typing import Optional

# Preparation (Prep JSON is served by the external payload-assembly stage)
PREP_JSON = "Prep JSON"
PREP_PROMPT = "Prep Prompt"

# Conversation setup
RUN_ASSISTANT = "Run GPT Assistant"
THREAD_CREATED = "ThreadCreated"
MESSAGE_POSTED = "MessagePosted"
RUN_STARTED = "RunStarted"
RUN_STATUS_PREFIX = "RunStatus:"

# Batching
CHECK_LOOP_BATCH = "Check Loop Batch"
AWAITING_NEXT_BATCH = "Awaiting Next Batch"
REQUEST_NEXT_BATCH = "Request Next Batch"
RESEND_LAST_RESPONSE = "Re-Send Last Response"
MAX_RETRIES_REACHED = "Max Retry Attempts Reached"
PARSE_RESPONSE = "Parse Response"
COMPLETE = "Complete"

# Recovery
POTENTIAL_RESTART = "PotentialRestart"
POLLING_NEEDED = "PollingNeeded"
RETRIEVE_NEEDED = "RetrieveNeeded"
HALT_PREFIX = "Halt:"

# Provider run statuses
ACTIVE_RUN_STATUSES = ("queued", "in_progress", "cancelling")
TERMINAL_RUN_STATUSES = ("completed", "failed", "cancelled", "expired", "requires_action")

RECOVERABLE_STATUSES = (
    RESEND_LAST_RESPONSE,
    POLLING_NEEDED,
    RETRIEVE_NEEDED,
    POTENTIAL_RESTART,
)

# status -> stage that resumes the run from it
ROUTES = {
    PREP_JSON: "prep_json",
    PREP_PROMPT: "prep_prompt",
    RUN_ASSISTANT: "run_assistant",
    POTENTIAL_RESTART: "run_assistant",
    POLLING_NEEDED: "poll_run_status",
    RETRIEVE_NEEDED: "retrieve_response",
    CHECK_LOOP_BATCH: "check_loop_batch",
    AWAITING_NEXT_BATCH: "request_next_batch",
    REQUEST_NEXT_BATCH: "request_next_batch",
    RESEND_LAST_RESPONSE: "resend_last_response",
    PARSE_RESPONSE: "parse_response",
}


def run_status(provider_status: str) -> str:
    """Status recorded while observing a provider run."""
    return f"{RUN_STATUS_PREFIX}{provider_status}"


def halt(reason: str) -> str:
    """Terminal status that needs an operator or configuration fix."""
    return f"{HALT_PREFIX}{reason}"


def is_halted(status: Optional[str]) -> bool:
    return bool(status) and (status.startswith(HALT_PREFIX) or status == MAX_RETRIES_REACHED)


def is_terminal(status: Optional[str]) -> bool:
    """True when no further automatic phase execution happens."""
    return status == COMPLETE or is_halted(status)


def is_recoverable(status: Optional[str]) -> bool:
    return status in RECOVERABLE_STATUSES


def route_for(status: Optional[str]) -> Optional[str]:
    """Stage name that continues a run in ``status``, if any."""
    if status is None:
        return None
    return ROUTES.get(status)


# Recoverable statuses left for the resume worker rather than re-fired at once
_DEFERRED_STATUSES = (POTENTIAL_RESTART, POLLING_NEEDED, RETRIEVE_NEEDED)


def advances_automatically(status: Optional[str]) -> bool:
    """True when the router should be fired right after ``status`` is written."""
    return route_for(status) is not None and status not in _DEFERRED_STATUSES
