"""Status transitions on tasks.md text.

Every operation here is a pure ``document -> document`` rewrite. The single
primitive, ``set_status``, replaces the one status character of the first
line carrying the requested identifier; every other byte of the document,
including line endings, indentation, optional markers and titles, is left
untouched. The composite operations are repeated applications of that
primitive, so the line count never changes.

Callers that read and write the document themselves can pass the digest of
the text they last read as ``expected_digest``; a mismatch raises
``ConflictError`` instead of silently overwriting a concurrent edit.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Dict, List, Optional, Tuple

from .aggregator import aggregate_status, get_group
from .errors import ConflictError, NotALeafError, TaskNotFoundError
from .models import TaskGroupStatus, TaskNode, TaskStatus
from .parser import TASK_LINE_PATTERN, flatten, parse

logger = logging.getLogger("tasklens.transitions")

_GROUP_CHECKBOX: Dict[TaskGroupStatus, TaskStatus] = {
    TaskGroupStatus.FAILED: TaskStatus.FAILED,
    TaskGroupStatus.IN_PROGRESS: TaskStatus.IN_PROGRESS,
    TaskGroupStatus.PARTIAL: TaskStatus.IN_PROGRESS,
    TaskGroupStatus.COMPLETED: TaskStatus.COMPLETED,
    TaskGroupStatus.NOT_STARTED: TaskStatus.NOT_STARTED,
}


def document_digest(document: str) -> str:
    """SHA-256 hex digest of the document text."""
    return hashlib.sha256(document.encode("utf-8", errors="surrogatepass")).hexdigest()


def check_digest(document: str, expected_digest: Optional[str]) -> None:
    """Raise ``ConflictError`` when the document no longer matches ``expected_digest``."""
    if expected_digest is None:
        return
    actual = document_digest(document)
    if actual != expected_digest:
        raise ConflictError(expected_digest, actual)


def _locate(lines: List[str], task_id: str) -> Optional[Tuple[int, int]]:
    """(line index, column of the status character) of the first matching line."""
    for index, line in enumerate(lines):
        match = TASK_LINE_PATTERN.match(line)
        if match and match.group("task_id") == task_id:
            return index, match.start("mark")
    return None


def _has_descendants(lines: List[str], task_id: str) -> bool:
    prefix = task_id + "."
    for line in lines:
        match = TASK_LINE_PATTERN.match(line)
        if match and match.group("task_id").startswith(prefix):
            return True
    return False


def get_task_status(document: str, task_id: str) -> TaskStatus:
    """Current status of the line carrying ``task_id``."""
    lines = document.split("\n")
    location = _locate(lines, task_id)
    if location is None:
        raise TaskNotFoundError(task_id, document)
    index, column = location
    return TaskStatus.from_marker(lines[index][column])


def set_status(
    document: str,
    task_id: str,
    new_status: TaskStatus | str,
    *,
    expected_digest: Optional[str] = None,
) -> str:
    """Rewrite the status character of one task line.

    Only leaves may be queued; queueing a task with sub-tasks raises
    ``NotALeafError``.
    """
    check_digest(document, expected_digest)
    status = TaskStatus.parse(new_status)
    lines = document.split("\n")
    location = _locate(lines, task_id)
    if location is None:
        raise TaskNotFoundError(task_id, document)
    if status is TaskStatus.QUEUED and _has_descendants(lines, task_id):
        raise NotALeafError(task_id, status.value)

    index, column = location
    line = lines[index]
    lines[index] = line[:column] + status.marker + line[column + 1:]
    logger.debug(f"Set task {task_id} to {status.value} (line {index + 1})")
    return "\n".join(lines)


def _require_group(forest: List[TaskNode], group_id: str, document: str) -> TaskNode:
    group = get_group(forest, group_id)
    if group is None:
        raise TaskNotFoundError(group_id, document)
    return group


def queue_group(document: str, group_id: str, *, expected_digest: Optional[str] = None) -> str:
    """Queue every not-started leaf of a group and mark the group in progress.

    A synthetic group has no line of its own; only its leaves are queued.
    """
    check_digest(document, expected_digest)
    group = _require_group(parse(document), group_id, document)

    updated = document
    queued = 0
    for leaf in group.leaves():
        if leaf.status is TaskStatus.NOT_STARTED:
            updated = set_status(updated, leaf.id, TaskStatus.QUEUED)
            queued += 1
    if not group.is_synthetic:
        updated = set_status(updated, group.id, TaskStatus.IN_PROGRESS)

    logger.info(f"Queued {queued} tasks in group {group_id}")
    return updated


def handle_failure(document: str, failed_task_id: str, *, expected_digest: Optional[str] = None) -> str:
    """Fail a leaf and its group, and release the group's other queued leaves."""
    check_digest(document, expected_digest)
    forest = parse(document)
    candidates = [node for node in flatten(forest) if node.id == failed_task_id and not node.is_synthetic]
    if not candidates:
        raise TaskNotFoundError(failed_task_id, document)
    failed = candidates[0]
    if not failed.is_leaf:
        raise NotALeafError(failed_task_id)

    group = get_group(forest, failed.group_id)
    if group is not None:
        members = group.leaves()
    else:
        members = [node for node in flatten(forest) if node.is_leaf and node.group_id == failed.group_id]

    updated = set_status(document, failed.id, TaskStatus.FAILED)
    if group is not None and not group.is_synthetic:
        updated = set_status(updated, group.id, TaskStatus.FAILED)

    reverted = 0
    for leaf in members:
        if leaf.id != failed.id and leaf.status is TaskStatus.QUEUED:
            updated = set_status(updated, leaf.id, TaskStatus.NOT_STARTED)
            reverted += 1

    logger.info(f"Task {failed_task_id} failed; reverted {reverted} queued tasks in group {failed.group_id}")
    return updated


def update_group_status(document: str, group_id: str, *, expected_digest: Optional[str] = None) -> str:
    """Recompute a group's checkbox from its leaves.

    Failed beats in progress; all completed gives completed; a mix of
    completed and not started gives in progress. A group without leaves, or a
    synthetic group, leaves the document unchanged.
    """
    check_digest(document, expected_digest)
    group = _require_group(parse(document), group_id, document)
    leaves = group.leaves()
    if not leaves or group.is_synthetic:
        return document
    status = _GROUP_CHECKBOX[aggregate_status(leaf.status for leaf in leaves)]
    return set_status(document, group.id, status)
