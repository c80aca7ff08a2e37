"""Checklist parsing for tasks.md documents.

This module turns the restricted Markdown checklist dialect into a forest of
``TaskNode`` objects. Hierarchy is derived from the dotted task identifiers,
never from indentation, so the parser tolerates documents whose indentation
is inconsistent. Lines that are not task lines (prose, headings, blank
lines) are skipped. Requirement references written on detail lines below a
task are attached to that task.

The inverse rendering, ``serialize``, lives here as well.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from .models import TaskLine, TaskNode, TaskStatus, id_depth

logger = logging.getLogger("tasklens.parser")

# "- [x] 1. Group", "  - [ ]* 2.3 Optional leaf", "  - [-]\* 1.1 Escaped marker"
TASK_LINE_PATTERN = re.compile(
    r"^(?P<indent>\s*)- \[(?P<mark>[ x\-!~])\](?P<optional>\\\*|\*)?\s+"
    r"(?P<task_id>\d+(?:\.\d+)*)(?:\.(?!\d)|(?=\s))\s*(?P<title>.*)$"
)
REQUIREMENTS_LINE_PATTERN = re.compile(r"^\s*-\s*_Requirements:\s*(?P<refs>.+?)_")

SYNTHETIC_TITLE = "Group {group_id}"


def tokenize_line(line: str, line_index: int = -1) -> Optional[TaskLine]:
    """Recognize a single checklist line, or return None."""
    match = TASK_LINE_PATTERN.match(line)
    if not match:
        return None
    return TaskLine(
        line_index=line_index,
        indent=match.group("indent"),
        status_char=match.group("mark"),
        optional_marker=match.group("optional") or "",
        task_id=match.group("task_id"),
        title=match.group("title").strip(),
    )


def parse_requirement_refs(line: str) -> List[str]:
    """Extract the ids of a ``- _Requirements: 1.1, 2.3_`` detail line."""
    match = REQUIREMENTS_LINE_PATTERN.match(line)
    if not match:
        return []
    return [ref.strip() for ref in match.group("refs").split(",") if ref.strip()]


def tokenize_document(document: str) -> List[TaskLine]:
    """Tokenize every task line and collect its trailing requirement references."""
    tokens: List[TaskLine] = []
    current: Optional[TaskLine] = None
    for index, line in enumerate(document.split("\n")):
        token = tokenize_line(line, index)
        if token is not None:
            tokens.append(token)
            current = token
            continue
        if current is not None:
            current.requirement_refs.extend(parse_requirement_refs(line))
    return tokens


def _node_from_token(token: TaskLine) -> TaskNode:
    return TaskNode(
        id=token.task_id,
        title=token.title,
        status=token.status,
        is_optional=token.is_optional,
        requirement_refs=list(token.requirement_refs),
    )


def resolve_hierarchy(nodes: Iterable[TaskNode]) -> List[TaskNode]:
    """Build the forest from nodes in document order using identifier depth.

    Nodes are attached in place; pass childless nodes. A node deeper than one
    with no open ancestor becomes a root instead of being dropped.
    """
    roots: List[TaskNode] = []
    stack: List[TaskNode] = []
    for node in nodes:
        depth = node.depth
        while stack and stack[-1].depth >= depth:
            stack.pop()
        if depth == 1:
            roots.append(node)
            stack = [node]
            continue
        if stack:
            stack[-1].children.append(node)
        else:
            logger.debug(f"Orphaned task {node.id} attached as a root")
            roots.append(node)
        stack.append(node)
    return roots


def flatten(forest: Iterable[TaskNode]) -> List[TaskNode]:
    """Every node of the forest in document order."""
    nodes: List[TaskNode] = []
    for root in forest:
        nodes.extend(root.walk())
    return nodes


def _synthetic_status(members: List[TaskNode]) -> TaskStatus:
    statuses = [member.status for member in members]
    if all(status is TaskStatus.COMPLETED for status in statuses):
        return TaskStatus.COMPLETED
    if TaskStatus.FAILED in statuses:
        return TaskStatus.FAILED
    if TaskStatus.IN_PROGRESS in statuses:
        return TaskStatus.IN_PROGRESS
    return TaskStatus.NOT_STARTED


def infer_synthetic_groups(forest: List[TaskNode]) -> List[TaskNode]:
    """Add virtual top-level groups to a forest that has none.

    Returns the forest unchanged when it already contains a depth-1 node or
    is empty, so applying it twice is a no-op.
    """
    if not forest or any(root.depth == 1 for root in forest):
        return forest

    partitions: Dict[str, List[TaskNode]] = {}
    for node in flatten(forest):
        member = replace(node, children=[], requirement_refs=list(node.requirement_refs))
        partitions.setdefault(node.group_id, []).append(member)

    groups: List[TaskNode] = []
    for group_id, members in partitions.items():
        groups.append(
            TaskNode(
                id=group_id,
                title=SYNTHETIC_TITLE.format(group_id=group_id),
                status=_synthetic_status(members),
                children=resolve_hierarchy(members),
                is_synthetic=True,
            )
        )
    logger.debug(f"Inferred {len(groups)} synthetic groups: {', '.join(partitions)}")
    return groups


def parse(document: str) -> List[TaskNode]:
    """Parse tasks.md content into a forest of task nodes.

    Never raises: unparsable or non-string input yields an empty forest.
    """
    if not isinstance(document, str):
        logger.warning(f"Ignoring non-text task document of type {type(document).__name__}")
        return []
    try:
        nodes = [_node_from_token(token) for token in tokenize_document(document)]
        return infer_synthetic_groups(resolve_hierarchy(nodes))
    except Exception as e:
        logger.warning(f"Failed to parse task document: {e}", exc_info=True)
        return []


def find_duplicate_ids(forest: Iterable[TaskNode]) -> List[str]:
    """Identifiers that appear on more than one line, in first-seen order."""
    counts = Counter(node.id for node in flatten(forest) if not node.is_synthetic)
    return [task_id for task_id, count in counts.items() if count > 1]


def _serialize_node(node: TaskNode, level: int, lines: List[str]) -> None:
    indent = "  " * level
    optional = "*" if node.is_optional else ""
    separator = "." if id_depth(node.id) == 1 else ""
    lines.append(f"{indent}- [{node.status.marker}]{optional} {node.id}{separator} {node.title}")
    if node.requirement_refs:
        lines.append(f"{indent}  - _Requirements: {', '.join(node.requirement_refs)}_")
    for child in node.children:
        _serialize_node(child, level + 1, lines)


def serialize(forest: Iterable[TaskNode]) -> str:
    """Render a forest back to tasks.md checklist text."""
    blocks: List[str] = []
    for root in forest:
        lines: List[str] = []
        _serialize_node(root, 0, lines)
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)
