"""tasklens - parse, aggregate and transition tasks.md checklists."""

from .aggregator import (
    aggregate,
    aggregate_status,
    count_tasks,
    find_next_executable_task,
    get_group,
    is_group_executable,
    summarize_group,
)
from .errors import ConflictError, NotALeafError, TaskLensError, TaskNotFoundError
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
    UnresolvedReference,
    VerificationCheck,
)
from .parser import find_duplicate_ids, flatten, parse, serialize
from .requirements import find_unresolved_references, parse_requirement_ids
from .transitions import (
    document_digest,
    get_task_status,
    handle_failure,
    queue_group,
    set_status,
    update_group_status,
)
from .verification import verify_transition
from .workspace import Workspace

__all__ = [
    "ActionKind",
    "ConflictError",
    "GroupDisplay",
    "GroupSummary",
    "LeafDisplay",
    "LeafSummary",
    "NotALeafError",
    "SubgroupSummary",
    "TaskAction",
    "TaskGroupStatus",
    "TaskLensError",
    "TaskNode",
    "TaskNotFoundError",
    "TaskStatus",
    "UnresolvedReference",
    "VerificationCheck",
    "Workspace",
    "aggregate",
    "aggregate_status",
    "count_tasks",
    "document_digest",
    "find_duplicate_ids",
    "find_next_executable_task",
    "find_unresolved_references",
    "flatten",
    "get_group",
    "get_task_status",
    "handle_failure",
    "is_group_executable",
    "parse",
    "parse_requirement_ids",
    "queue_group",
    "serialize",
    "set_status",
    "summarize_group",
    "update_group_status",
    "verify_transition",
]
