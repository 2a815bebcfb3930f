"""Best-effort extraction of completion markers from agent stdout."""

from __future__ import annotations

import re

TASK_COMPLETED_MARKER = "TASK_COMPLETED"
FINALIZED_MARKER = "FINALIZED"
ALL_COMPLETE_MARKER = "<promise>COMPLETE</promise>"

_MARKER_PATTERNS = {
    marker: re.compile(rf"{marker}:\s*([\w.-]+)", re.IGNORECASE)
    for marker in (TASK_COMPLETED_MARKER, FINALIZED_MARKER)
}


def extract_task_id(output: str, marker: str) -> str | None:
    """Return the task id following ``marker`` in ``output``, if any."""

    pattern = _MARKER_PATTERNS.get(marker)
    if pattern is None:
        pattern = re.compile(rf"{re.escape(marker)}:\s*([\w.-]+)", re.IGNORECASE)
    match = pattern.search(output)
    if match is None:
        return None
    # Trailing punctuation is sentence noise, not part of the id.
    return match.group(1).rstrip(".") or None


def has_all_complete_marker(output: str) -> bool:
    return ALL_COMPLETE_MARKER in output
