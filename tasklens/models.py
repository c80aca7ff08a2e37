"""Data models for the tasklens engine.

This module contains the core data structures shared by the parser, the
status aggregator and the status transition engine: the closed status
enumeration and its checkbox markers, the tokenized line record, the task
tree node and the summary records handed to downstream consumers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class TaskStatus(str, Enum):
    """Status of a single checklist entry."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    QUEUED = "queued"

    @property
    def marker(self) -> str:
        """Checkbox character written between the brackets."""
        return STATUS_MARKERS[self]

    @classmethod
    def from_marker(cls, marker: str) -> "TaskStatus":
        """Map a checkbox character to its status."""
        try:
            return MARKER_STATUSES[marker]
        except KeyError:
            raise ValueError(f"Unrecognized status marker: {marker!r}") from None

    @classmethod
    def parse(cls, value: "TaskStatus | str") -> "TaskStatus":
        """Accept a status member or its string value."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(status.value for status in cls)
            raise ValueError(f"Invalid status '{value}'. Expected one of: {valid}") from None


STATUS_MARKERS: Dict[TaskStatus, str] = {
    TaskStatus.NOT_STARTED: " ",
    TaskStatus.IN_PROGRESS: "-",
    TaskStatus.COMPLETED: "x",
    TaskStatus.FAILED: "!",
    TaskStatus.QUEUED: "~",
}

MARKER_STATUSES: Dict[str, TaskStatus] = {marker: status for status, marker in STATUS_MARKERS.items()}

if set(STATUS_MARKERS) != set(TaskStatus) or len(MARKER_STATUSES) != len(STATUS_MARKERS):
    raise RuntimeError("Every TaskStatus needs exactly one distinct checkbox marker")


class TaskGroupStatus(str, Enum):
    """Aggregate status of a group or subgroup computed from its members."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"


class GroupDisplay(str, Enum):
    """Display decision for a group or subgroup header."""

    COMPLETE = "complete"
    FAILED = "failed"
    IN_PROGRESS = "in_progress"
    ACTIONABLE = "actionable"


class LeafDisplay(str, Enum):
    """Display decision for a leaf task, one per status."""

    RUNNABLE = "runnable"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    QUEUED = "queued"


class ActionKind(str, Enum):
    """Affordances a consumer may offer for a node."""

    START_GROUP = "start_group"
    START_SUBGROUP = "start_subgroup"
    RUN = "run"
    RETRY = "retry"
    FIX = "fix"


def id_depth(task_id: str) -> int:
    """Number of dot-separated segments in a task identifier."""
    return len(task_id.split("."))


@dataclass(slots=True)
class TaskLine:
    """A single tokenized checklist line."""

    line_index: int
    indent: str
    status_char: str
    optional_marker: str
    task_id: str
    title: str
    requirement_refs: List[str] = field(default_factory=list)

    @property
    def status(self) -> TaskStatus:
        return TaskStatus.from_marker(self.status_char)

    @property
    def is_optional(self) -> bool:
        return bool(self.optional_marker)

    @property
    def depth(self) -> int:
        return id_depth(self.task_id)


@dataclass(slots=True)
class TaskNode:
    """One checklist entry and its children, in document order."""

    id: str
    title: str
    status: TaskStatus = TaskStatus.NOT_STARTED
    is_optional: bool = False
    requirement_refs: List[str] = field(default_factory=list)
    children: List["TaskNode"] = field(default_factory=list)
    is_synthetic: bool = False

    @property
    def depth(self) -> int:
        return id_depth(self.id)

    @property
    def is_leaf(self) -> bool:
        return not self.children

    @property
    def group_id(self) -> str:
        """Identifier of the top-level group this node belongs to."""
        return self.id.split(".")[0]

    def walk(self):
        """Yield this node and every descendant in document order."""
        yield self
        for child in self.children:
            yield from child.walk()

    def leaves(self) -> List["TaskNode"]:
        """Descendant leaves in document order, excluding this node."""
        return [node for node in self.walk() if node is not self and node.is_leaf]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "is_optional": self.is_optional,
            "requirement_refs": list(self.requirement_refs),
            "is_synthetic": self.is_synthetic,
            "children": [child.to_dict() for child in self.children],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskNode":
        """Create from dictionary representation."""
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            status=TaskStatus.parse(data.get("status", TaskStatus.NOT_STARTED)),
            is_optional=data.get("is_optional", False),
            requirement_refs=list(data.get("requirement_refs", [])),
            children=[cls.from_dict(child) for child in data.get("children", [])],
            is_synthetic=data.get("is_synthetic", False),
        )


@dataclass(slots=True)
class TaskAction:
    """An action a consumer may offer, addressed by task/group ids."""

    kind: ActionKind
    task_id: str
    group_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "task_id": self.task_id, "group_id": self.group_id}


@dataclass(slots=True)
class LeafSummary:
    """Display decision for one leaf task."""

    task_id: str
    title: str
    status: TaskStatus
    display: LeafDisplay
    actions: List[TaskAction] = field(default_factory=list)
    blocked_by: Optional[str] = None

    @property
    def is_blocked(self) -> bool:
        return self.blocked_by is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "title": self.title,
            "status": self.status.value,
            "display": self.display.value,
            "actions": [action.to_dict() for action in self.actions],
            "blocked_by": self.blocked_by,
        }


@dataclass(slots=True)
class SubgroupSummary:
    """Display decision for a depth-2 container, from its direct children."""

    subgroup_id: str
    title: str
    display: GroupDisplay
    status: TaskGroupStatus
    completed: int
    total: int
    failed: int
    actions: List[TaskAction] = field(default_factory=list)

    @property
    def progress(self) -> str:
        return f"{self.completed}/{self.total} done"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subgroup_id": self.subgroup_id,
            "title": self.title,
            "display": self.display.value,
            "status": self.status.value,
            "completed": self.completed,
            "total": self.total,
            "failed": self.failed,
            "progress": self.progress,
            "actions": [action.to_dict() for action in self.actions],
        }


@dataclass(slots=True)
class GroupSummary:
    """Display decision and counters for a top-level group."""

    group_id: str
    title: str
    stored_status: TaskStatus
    display: GroupDisplay
    status: TaskGroupStatus
    completed: int
    total: int
    failed: int
    is_optional: bool = False
    is_synthetic: bool = False
    actions: List[TaskAction] = field(default_factory=list)
    subgroups: List[SubgroupSummary] = field(default_factory=list)
    leaves: List[LeafSummary] = field(default_factory=list)
    blocking: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    unresolved_references: List["UnresolvedReference"] = field(default_factory=list)

    @property
    def progress(self) -> str:
        return f"{self.completed}/{self.total} done"

    @property
    def is_complete(self) -> bool:
        return self.display is GroupDisplay.COMPLETE

    @property
    def blocked_by(self) -> Optional[str]:
        """First blocking failure in the group, if any."""
        return next(iter(self.blocking.values()), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "group_id": self.group_id,
            "title": self.title,
            "stored_status": self.stored_status.value,
            "display": self.display.value,
            "status": self.status.value,
            "completed": self.completed,
            "total": self.total,
            "failed": self.failed,
            "progress": self.progress,
            "is_optional": self.is_optional,
            "is_synthetic": self.is_synthetic,
            "actions": [action.to_dict() for action in self.actions],
            "subgroups": [subgroup.to_dict() for subgroup in self.subgroups],
            "leaves": [leaf.to_dict() for leaf in self.leaves],
            "blocking": dict(self.blocking),
            "blocked_by": self.blocked_by,
            "warnings": list(self.warnings),
            "unresolved_references": [ref.to_dict() for ref in self.unresolved_references],
        }


@dataclass(slots=True)
class UnresolvedReference:
    """Requirement ids referenced by a task but absent from the requirements document."""

    task_id: str
    missing_ids: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {"task_id": self.task_id, "missing_ids": list(self.missing_ids)}


@dataclass(slots=True)
class VerificationCheck:
    """Outcome of one post-transition check."""

    name: str
    passed: bool
    expected: str
    actual: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "passed": self.passed,
            "expected": self.expected,
            "actual": self.actual,
            "message": self.message,
        }
