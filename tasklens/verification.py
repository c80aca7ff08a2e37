"""Post-transition verification of tasks.md content.

Compares the document before and after a status transition and reports
whether the target task exists, whether it carries the expected status and
whether the line count was preserved.
"""

from __future__ import annotations

from typing import List

from .errors import TaskNotFoundError
from .models import TaskStatus, VerificationCheck
from .transitions import get_task_status


def verify_transition(
    before: str,
    after: str,
    task_id: str,
    expected_status: TaskStatus | str,
) -> List[VerificationCheck]:
    """Check a rewritten document against the expected outcome."""
    expected = TaskStatus.parse(expected_status)
    checks: List[VerificationCheck] = []

    try:
        actual = get_task_status(after, task_id)
    except TaskNotFoundError:
        checks.append(VerificationCheck(
            name=f"Task {task_id} exists",
            passed=False,
            expected="task entry present",
            actual="task entry missing",
            message=f"Task '{task_id}' not found in tasks.md",
        ))
        return checks

    checks.append(VerificationCheck(
        name=f"Task {task_id} exists",
        passed=True,
        expected="task entry present",
        actual="task entry present",
        message=f"Task '{task_id}' found in tasks.md",
    ))

    matches = actual is expected
    checks.append(VerificationCheck(
        name=f"Task {task_id} status",
        passed=matches,
        expected=expected.value,
        actual=actual.value,
        message=(
            f"Task status is {expected.value} as expected"
            if matches
            else f"Drift: expected {expected.value}, actual {actual.value}"
        ),
    ))

    before_count = len(before.split("\n"))
    after_count = len(after.split("\n"))
    checks.append(VerificationCheck(
        name="Content integrity",
        passed=before_count == after_count,
        expected=f"{before_count} lines",
        actual=f"{after_count} lines",
        message=(
            "Line count preserved"
            if before_count == after_count
            else f"Line count changed: expected {before_count}, got {after_count}"
        ),
    ))
    return checks
