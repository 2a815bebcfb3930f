from __future__ import annotations

import allure

from xloop.orchestrator.markers import (
    FINALIZED_MARKER,
    TASK_COMPLETED_MARKER,
    extract_task_id,
    has_all_complete_marker,
)

pytestmark = [
    allure.epic("Phase Orchestration"),
    allure.feature("Completion Markers"),
]


def test_extract_task_id_reads_marker_line() -> None:
    output = "Implemented login form.\nTASK_COMPLETED: task-007\nDone."
    assert extract_task_id(output, TASK_COMPLETED_MARKER) == "task-007"


def test_extract_task_id_is_case_insensitive_and_trims_sentence_dot() -> None:
    assert extract_task_id("finalized:   auth.3.", FINALIZED_MARKER) == "auth.3"


def test_extract_task_id_returns_none_without_marker() -> None:
    assert extract_task_id("All good, nothing to report", TASK_COMPLETED_MARKER) is None
    assert extract_task_id("TASK_COMPLETED: ", TASK_COMPLETED_MARKER) is None


def test_extract_task_id_does_not_mix_markers() -> None:
    output = "TASK_COMPLETED: task-1"
    assert extract_task_id(output, FINALIZED_MARKER) is None


def test_all_complete_marker_detection() -> None:
    assert has_all_complete_marker("No pending tasks.\n<promise>COMPLETE</promise>\n")
    assert not has_all_complete_marker("COMPLETE")
