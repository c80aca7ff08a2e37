"""Status aggregation for parsed task forests.

Recomputes the authoritative progress of every group from its children:
the ``completed/total`` counter of a group's countable (depth-2) children,
the display decision for groups, subgroups and leaves, the actions a
consumer may offer for each, and the blocking state of leaves that follow a
failed sibling in the same subgroup.

A stored container checkbox is only a summary. Apart from the explicit
``failed`` / ``in progress`` markers on a group header, every decision here
is derived from the leaves.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .models import (
    ActionKind,
    GroupDisplay,
    GroupSummary,
    LeafDisplay,
    LeafSummary,
    SubgroupSummary,
    TaskAction,
    TaskGroupStatus,
    TaskNode,
    TaskStatus,
)
from .parser import find_duplicate_ids, flatten
from .requirements import unresolved_references

logger = logging.getLogger("tasklens.aggregator")

_LEAF_DISPLAY: Dict[TaskStatus, LeafDisplay] = {
    TaskStatus.NOT_STARTED: LeafDisplay.RUNNABLE,
    TaskStatus.IN_PROGRESS: LeafDisplay.IN_PROGRESS,
    TaskStatus.COMPLETED: LeafDisplay.COMPLETED,
    TaskStatus.FAILED: LeafDisplay.FAILED,
    TaskStatus.QUEUED: LeafDisplay.QUEUED,
}

_GROUP_DISPLAY: Dict[TaskGroupStatus, GroupDisplay] = {
    TaskGroupStatus.COMPLETED: GroupDisplay.COMPLETE,
    TaskGroupStatus.FAILED: GroupDisplay.FAILED,
    TaskGroupStatus.IN_PROGRESS: GroupDisplay.IN_PROGRESS,
    TaskGroupStatus.PARTIAL: GroupDisplay.ACTIONABLE,
    TaskGroupStatus.NOT_STARTED: GroupDisplay.ACTIONABLE,
}

_EFFECTIVE_STATUS: Dict[TaskGroupStatus, TaskStatus] = {
    TaskGroupStatus.COMPLETED: TaskStatus.COMPLETED,
    TaskGroupStatus.FAILED: TaskStatus.FAILED,
    TaskGroupStatus.IN_PROGRESS: TaskStatus.IN_PROGRESS,
    TaskGroupStatus.PARTIAL: TaskStatus.IN_PROGRESS,
    TaskGroupStatus.NOT_STARTED: TaskStatus.NOT_STARTED,
}


def aggregate_status(statuses: Iterable[TaskStatus]) -> TaskGroupStatus:
    """Combine member statuses; queued members count as not started."""
    normalized = [
        TaskStatus.NOT_STARTED if status is TaskStatus.QUEUED else status for status in statuses
    ]
    if not normalized:
        return TaskGroupStatus.NOT_STARTED
    if TaskStatus.FAILED in normalized:
        return TaskGroupStatus.FAILED
    if TaskStatus.IN_PROGRESS in normalized:
        return TaskGroupStatus.IN_PROGRESS
    if TaskStatus.COMPLETED in normalized:
        if TaskStatus.NOT_STARTED in normalized:
            return TaskGroupStatus.PARTIAL
        return TaskGroupStatus.COMPLETED
    return TaskGroupStatus.NOT_STARTED


def effective_status(node: TaskNode) -> TaskStatus:
    """Status of a node as implied by its leaves, bottom-up."""
    if node.is_leaf:
        return node.status
    return _EFFECTIVE_STATUS[aggregate_status(effective_status(child) for child in node.children)]


def is_effectively_complete(node: TaskNode) -> bool:
    """A completed leaf, or a container whose children are all effectively complete."""
    if node.is_leaf:
        return node.status is TaskStatus.COMPLETED
    return all(is_effectively_complete(child) for child in node.children)


def countable_children(group: TaskNode) -> List[TaskNode]:
    """A group's immediate depth-2 children."""
    return [child for child in group.children if child.depth == 2]


# ----------------------------------------------------------------------
# Blocking analysis
# ----------------------------------------------------------------------


def subgroup_key(task_id: str) -> str:
    """First two identifier segments of a leaf id."""
    return ".".join(task_id.split(".")[:2])


def analyze_blocking(leaves: Iterable[TaskNode]) -> Dict[str, str]:
    """Map each subgroup to the first failed leaf that blocks a later sibling.

    Leaves are grouped by their first two identifier segments, in document
    order. A failure that is the last leaf of its subgroup blocks nothing.
    """
    by_subgroup: Dict[str, List[TaskNode]] = {}
    for leaf in leaves:
        by_subgroup.setdefault(subgroup_key(leaf.id), []).append(leaf)

    blocking: Dict[str, str] = {}
    for key, members in by_subgroup.items():
        for leaf in members[:-1]:
            if leaf.status is TaskStatus.FAILED:
                blocking[key] = leaf.id
                break
    return blocking


def blocked_leaves(leaves: List[TaskNode], blocking: Dict[str, str]) -> Dict[str, str]:
    """Leaf id -> id of the failure that blocks it."""
    blocked: Dict[str, str] = {}
    seen_failure: Set[str] = set()
    for leaf in leaves:
        key = subgroup_key(leaf.id)
        blocker = blocking.get(key)
        if blocker is None:
            continue
        if key in seen_failure:
            blocked[leaf.id] = blocker
        elif leaf.id == blocker:
            seen_failure.add(key)
    return blocked


# ----------------------------------------------------------------------
# Display decisions
# ----------------------------------------------------------------------


def summarize_leaf(leaf: TaskNode, blocked_by: Optional[str] = None) -> LeafSummary:
    """Display decision for a leaf, a direct function of its status."""
    actions: List[TaskAction] = []
    if leaf.status is TaskStatus.NOT_STARTED:
        actions.append(TaskAction(ActionKind.RUN, leaf.id))
    elif leaf.status is TaskStatus.FAILED:
        actions.append(TaskAction(ActionKind.RETRY, leaf.id))
        actions.append(TaskAction(ActionKind.FIX, leaf.id, group_id=leaf.group_id))
    return LeafSummary(
        task_id=leaf.id,
        title=leaf.title,
        status=leaf.status,
        display=_LEAF_DISPLAY[leaf.status],
        actions=actions,
        blocked_by=blocked_by,
    )


def summarize_subgroup(subgroup: TaskNode) -> SubgroupSummary:
    """Display decision for a container, from its direct children only."""
    child_statuses = [effective_status(child) for child in subgroup.children]
    status = aggregate_status(child_statuses)
    display = _GROUP_DISPLAY[status]
    actions: List[TaskAction] = []
    if display is GroupDisplay.ACTIONABLE:
        actions.append(TaskAction(ActionKind.START_SUBGROUP, subgroup.id, group_id=subgroup.group_id))
    return SubgroupSummary(
        subgroup_id=subgroup.id,
        title=subgroup.title,
        display=display,
        status=status,
        completed=sum(1 for child in subgroup.children if is_effectively_complete(child)),
        total=len(subgroup.children),
        failed=child_statuses.count(TaskStatus.FAILED),
        actions=actions,
    )


def _group_display(group: TaskNode, completed: int, total: int) -> GroupDisplay:
    if group.status is TaskStatus.FAILED:
        return GroupDisplay.FAILED
    if group.status is TaskStatus.IN_PROGRESS:
        return GroupDisplay.IN_PROGRESS
    if total > 0 and completed == total:
        return GroupDisplay.COMPLETE
    return GroupDisplay.ACTIONABLE


def summarize_group(
    group: TaskNode,
    requirement_ids: Optional[Set[str]] = None,
) -> GroupSummary:
    """Counters, display decision and warnings for one top-level group."""
    countable = countable_children(group)
    completed = sum(1 for child in countable if is_effectively_complete(child))
    total = len(countable)
    effective = [effective_status(child) for child in countable]
    display = _group_display(group, completed, total)

    if countable:
        status = aggregate_status(effective)
    else:
        status = aggregate_status([group.status])

    actions: List[TaskAction] = []
    if display is GroupDisplay.ACTIONABLE:
        actions.append(TaskAction(ActionKind.START_GROUP, group.id, group_id=group.id))

    leaves = group.leaves()
    blocking = analyze_blocking(leaves)
    blocked = blocked_leaves(leaves, blocking)

    summary = GroupSummary(
        group_id=group.id,
        title=group.title,
        stored_status=group.status,
        display=display,
        status=status,
        completed=completed,
        total=total,
        failed=effective.count(TaskStatus.FAILED),
        is_optional=group.is_optional,
        is_synthetic=group.is_synthetic,
        actions=actions,
        subgroups=[summarize_subgroup(child) for child in countable if not child.is_leaf],
        leaves=[summarize_leaf(leaf, blocked.get(leaf.id)) for leaf in leaves],
        blocking=blocking,
    )

    if blocking:
        summary.warnings.append(f"Blocked by failed task {summary.blocked_by}")

    if requirement_ids is not None:
        summary.unresolved_references = unresolved_references(list(group.walk()), requirement_ids)
        missing = _unique(ref for item in summary.unresolved_references for ref in item.missing_ids)
        if missing:
            plural = "s" if len(missing) > 1 else ""
            summary.warnings.append(f"{len(missing)} unresolved requirement reference{plural}")

    return summary


def aggregate(
    forest: List[TaskNode],
    requirement_ids: Optional[Set[str]] = None,
) -> List[GroupSummary]:
    """Summaries for every depth-1 group of the forest, in document order.

    Pass ``requirement_ids`` (see ``requirements.parse_requirement_ids``) to
    cross-reference each group's requirement references.
    """
    duplicates = set(find_duplicate_ids(forest))
    summaries: List[GroupSummary] = []
    for root in forest:
        if root.depth != 1:
            logger.debug(f"Skipping orphaned root {root.id} in aggregation")
            continue
        summary = summarize_group(root, requirement_ids)
        for task_id in _unique(node.id for node in root.walk() if node.id in duplicates):
            summary.warnings.append(f"Duplicate task id {task_id}")
        summaries.append(summary)
    return summaries


# ----------------------------------------------------------------------
# Queries
# ----------------------------------------------------------------------


def get_group(forest: Iterable[TaskNode], group_id: str) -> Optional[TaskNode]:
    """The first depth-1 node with the given id."""
    for root in forest:
        if root.depth == 1 and root.id == group_id:
            return root
    return None


def find_next_executable_task(group: TaskNode) -> Optional[TaskNode]:
    """First not-started or queued leaf that no earlier failure blocks."""
    leaves = group.leaves()
    blocked = blocked_leaves(leaves, analyze_blocking(leaves))
    for leaf in leaves:
        if leaf.status in (TaskStatus.NOT_STARTED, TaskStatus.QUEUED) and leaf.id not in blocked:
            return leaf
    return None


def is_group_executable(group: TaskNode) -> bool:
    """Whether the group has at least one executable leaf."""
    return find_next_executable_task(group) is not None


def count_tasks(forest: Iterable[TaskNode]) -> Tuple[int, int]:
    """Total and completed number of task lines in the forest."""
    nodes = [node for node in flatten(forest) if not node.is_synthetic]
    return len(nodes), sum(1 for node in nodes if node.status is TaskStatus.COMPLETED)


def _unique(values: Iterable[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for value in values:
        seen.setdefault(value, None)
    return list(seen)
