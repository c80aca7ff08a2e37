"""Requirement cross-referencing between tasks.md and requirements.md.

A requirements document introduces requirement ``N`` with a heading such as
``### Requirement 3: Export`` and lists its acceptance criteria as a
numbered list. Item ``M.`` under requirement ``N`` is identified as
``"N.M"`` until the next heading at the same level or above. Task detail
lines reference those identifiers; references that do not resolve are
advisory warnings only.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Set

from .models import TaskNode, UnresolvedReference
from .parser import flatten

REQUIREMENT_HEADING_PATTERN = re.compile(r"^(?P<level>#{1,6})\s+Requirement\s+(?P<number>\d+)\b", re.IGNORECASE)
HEADING_PATTERN = re.compile(r"^(?P<level>#{1,6})\s")
REQUIREMENT_ITEM_PATTERN = re.compile(r"^(?P<number>\d+)\.\s")


def parse_requirement_ids(content: str) -> Set[str]:
    """Collect every ``N.M`` acceptance-criterion identifier.

    Sub-headings of a requirement (``#### Acceptance Criteria``) keep it
    open; a heading at the requirement's level or above closes it.
    """
    ids: Set[str] = set()
    current: Optional[str] = None
    current_level = 0
    for line in content.split("\n"):
        heading = REQUIREMENT_HEADING_PATTERN.match(line)
        if heading:
            current = heading.group("number")
            current_level = len(heading.group("level"))
            continue
        other = HEADING_PATTERN.match(line)
        if other:
            if len(other.group("level")) <= current_level:
                current = None
                current_level = 0
            continue
        if current is None:
            continue
        item = REQUIREMENT_ITEM_PATTERN.match(line)
        if item:
            ids.add(f"{current}.{item.group('number')}")
    return ids


def unresolved_references(nodes: Iterable[TaskNode], requirement_ids: Set[str]) -> List[UnresolvedReference]:
    """Per task, the referenced ids missing from ``requirement_ids``."""
    unresolved: List[UnresolvedReference] = []
    for node in nodes:
        missing: List[str] = []
        for ref in node.requirement_refs:
            if ref not in requirement_ids and ref not in missing:
                missing.append(ref)
        if missing:
            unresolved.append(UnresolvedReference(task_id=node.id, missing_ids=missing))
    return unresolved


def find_unresolved_references(forest: List[TaskNode], requirements_text: str) -> List[UnresolvedReference]:
    """Cross-reference every task of the forest against a requirements document."""
    return unresolved_references(flatten(forest), parse_requirement_ids(requirements_text))
