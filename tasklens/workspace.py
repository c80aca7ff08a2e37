"""Workspace access for spec directories.

The engine modules operate on strings only. This module is the consumer
side that owns the file system: it locates ``tasks.md`` and
``requirements.md`` for a spec, feeds their content to the engine and
writes transitioned documents back atomically.
"""

from __future__ import annotations

import logging
import os
import tempfile
from contextlib import suppress
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from .aggregator import aggregate, count_tasks, find_next_executable_task, get_group
from .errors import TaskNotFoundError
from .models import GroupSummary, TaskNode, TaskStatus, UnresolvedReference, VerificationCheck
from .parser import flatten, parse, tokenize_document
from .requirements import parse_requirement_ids, unresolved_references
from .tasklens_logging import (
    ObservabilityHooks,
    log_error_with_context,
    log_group_event,
    log_operation,
    log_performance,
    log_task_transition,
)
from .transitions import (
    check_digest,
    document_digest,
    get_task_status,
    handle_failure,
    queue_group,
    set_status,
    update_group_status,
)
from .verification import verify_transition

logger = logging.getLogger("tasklens.workspace")

DESCRIPTION_LIMIT = 120


def is_document_done(text: str) -> bool:
    """A document counts as written once it has more than a heading line."""
    return len([line for line in text.strip().split("\n") if line.strip()]) > 1


def extract_description(text: str) -> str:
    """First non-heading, non-empty line, truncated."""
    for line in text.split("\n"):
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            if len(stripped) > DESCRIPTION_LIMIT:
                return stripped[:DESCRIPTION_LIMIT] + "…"
            return stripped
    return ""


def status_changes(before: str, after: str) -> List[Dict[str, str]]:
    """Per task line, the status before and after a rewrite that kept every line."""
    changes = []
    for old, new in zip(tokenize_document(before), tokenize_document(after)):
        if old.status_char != new.status_char:
            changes.append({
                "task_id": new.task_id,
                "old_status": old.status.value,
                "new_status": new.status.value,
            })
    return changes


class Workspace:
    """Read and update spec documents below a project root."""

    SPECS_PATH_ENV = "TASKLENS_SPECS_PATH"
    DEFAULT_SPECS_PATH = ".kiro/specs"

    def __init__(
        self,
        root: Path | str,
        specs_path: Optional[str] = None,
        hooks: Optional[ObservabilityHooks] = None,
    ):
        """Initialize workspace with given root directory."""
        self.root = Path(root).resolve()
        relative = specs_path or os.getenv(self.SPECS_PATH_ENV) or self.DEFAULT_SPECS_PATH
        self.specs_dir = self.root / relative
        self.hooks = hooks if hooks is not None else ObservabilityHooks()
        logger.debug(f"Workspace initialized at {self.root} (specs: {self.specs_dir})")

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def spec_dir(self, spec_name: str) -> Path:
        """Directory of a spec."""
        if not spec_name or not spec_name.strip():
            raise ValueError("Spec name cannot be empty")
        if "/" in spec_name or "\\" in spec_name or spec_name in {".", ".."}:
            raise ValueError(f"Invalid spec name '{spec_name}'")
        return self.specs_dir / spec_name

    def tasks_path(self, spec_name: str) -> Path:
        return self.spec_dir(spec_name) / "tasks.md"

    def requirements_path(self, spec_name: str) -> Path:
        return self.spec_dir(spec_name) / "requirements.md"

    def design_path(self, spec_name: str) -> Path:
        return self.spec_dir(spec_name) / "design.md"

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def list_specs(self) -> List[Dict[str, Any]]:
        """Summaries of every spec directory."""
        if not self.specs_dir.is_dir():
            return []

        specs = []
        for spec_dir in sorted(self.specs_dir.iterdir()):
            if not spec_dir.is_dir():
                continue
            name = spec_dir.name
            requirements = self._read_optional(self.requirements_path(name))
            design = self._read_optional(self.design_path(name))
            tasks = self._read_optional(self.tasks_path(name))
            total, completed = count_tasks(parse(tasks)) if tasks is not None else (0, 0)
            specs.append({
                "name": name,
                "description": extract_description(requirements) if requirements else "",
                "requirements_done": requirements is not None and is_document_done(requirements),
                "design_done": design is not None and is_document_done(design),
                "tasks_total": total,
                "tasks_completed": completed,
            })
        return specs

    def read_tasks(self, spec_name: str) -> str:
        """Raw tasks.md content of a spec."""
        path = self.tasks_path(spec_name)
        if not path.exists():
            raise FileNotFoundError(f"No tasks.md found for spec '{spec_name}' at {path}.")
        return self._read(path)

    def tasks_digest(self, spec_name: str) -> str:
        """Digest of the current tasks.md, for ``expected_digest`` arguments."""
        return document_digest(self.read_tasks(spec_name))

    def load_forest(self, spec_name: str) -> List[TaskNode]:
        """Parsed task forest of a spec."""
        return parse(self.read_tasks(spec_name))

    def load_requirement_ids(self, spec_name: str) -> Optional[Set[str]]:
        """Requirement identifiers, or None when the spec has no requirements.md."""
        content = self._read_optional(self.requirements_path(spec_name))
        if content is None:
            return None
        return parse_requirement_ids(content)

    @log_performance("summarize")
    def summarize(self, spec_name: str) -> List[GroupSummary]:
        """Group summaries, cross-referenced with requirements.md when present."""
        return aggregate(self.load_forest(spec_name), self.load_requirement_ids(spec_name))

    def validate_requirements(self, spec_name: str) -> List[UnresolvedReference]:
        """Unresolved requirement references; empty when requirements.md is absent."""
        requirement_ids = self.load_requirement_ids(spec_name)
        if requirement_ids is None:
            return []
        return unresolved_references(flatten(self.load_forest(spec_name)), requirement_ids)

    def next_task(self, spec_name: str, group_id: str) -> Optional[TaskNode]:
        """Next executable leaf of a group."""
        group = get_group(self.load_forest(spec_name), group_id)
        if group is None:
            raise TaskNotFoundError(group_id)
        return find_next_executable_task(group)

    def verify_task_status(
        self,
        spec_name: str,
        task_id: str,
        expected_status: TaskStatus | str,
        before: Optional[str] = None,
    ) -> List[VerificationCheck]:
        """Verify the stored status of a task, and the line count against ``before``."""
        after = self.read_tasks(spec_name)
        return verify_transition(after if before is None else before, after, task_id, expected_status)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @log_performance("set_task_status")
    def set_task_status(
        self,
        spec_name: str,
        task_id: str,
        status: TaskStatus | str,
        *,
        expected_digest: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Set one task's status in tasks.md."""
        new_status = TaskStatus.parse(status)
        old_status: Dict[str, TaskStatus] = {}

        def transform(content: str) -> str:
            old_status["value"] = get_task_status(content, task_id)
            return set_status(content, task_id, new_status)

        result = self._apply(spec_name, "set_task_status", transform, expected_digest, task_id=task_id)
        result.update({
            "task_id": task_id,
            "old_status": old_status["value"].value,
            "new_status": new_status.value,
        })
        return result

    @log_performance("queue_group")
    def queue_group(self, spec_name: str, group_id: str, *, expected_digest: Optional[str] = None) -> Dict[str, Any]:
        """Reserve a group's not-started leaves for sequential execution."""
        result = self._apply(
            spec_name, "queue_group", lambda content: queue_group(content, group_id), expected_digest,
            group_id=group_id,
        )
        log_group_event(self.hooks, "queued", spec_name, group_id)
        result["group_id"] = group_id
        return result

    @log_performance("handle_task_failure")
    def handle_task_failure(
        self,
        spec_name: str,
        task_id: str,
        *,
        expected_digest: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Record a failed leaf, fail its group and release queued siblings."""
        result = self._apply(
            spec_name, "handle_task_failure", lambda content: handle_failure(content, task_id), expected_digest,
            task_id=task_id,
        )
        group_id = task_id.split(".")[0]
        log_group_event(self.hooks, "failed", spec_name, group_id, failed_task_id=task_id)
        result.update({"task_id": task_id, "group_id": group_id})
        return result

    @log_performance("update_group_status")
    def update_group_status(
        self,
        spec_name: str,
        group_id: str,
        *,
        expected_digest: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Rewrite a group's checkbox from its leaves."""
        result = self._apply(
            spec_name, "update_group_status", lambda content: update_group_status(content, group_id),
            expected_digest, group_id=group_id,
        )
        result["group_id"] = group_id
        group = get_group(parse(result["content"]), group_id)
        result["status"] = group.status.value if group is not None else None
        return result

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _apply(
        self,
        spec_name: str,
        operation: str,
        transform: Callable[[str], str],
        expected_digest: Optional[str],
        **fields: Any,
    ) -> Dict[str, Any]:
        path = self.tasks_path(spec_name)
        try:
            with log_operation(operation, spec_name=spec_name, **fields):
                before = self.read_tasks(spec_name)
                check_digest(before, expected_digest)
                after = transform(before)
                if after != before:
                    self._write_atomic(path, after)
        except Exception as e:
            log_error_with_context(e, {"operation": operation, "spec_name": spec_name, **fields})
            raise

        changes = status_changes(before, after)
        for change in changes:
            log_task_transition(
                self.hooks, spec_name, change["task_id"], change["old_status"], change["new_status"],
                operation=operation,
            )
        return {
            "spec_name": spec_name,
            "tasks_path": str(path),
            "changed": bool(changes),
            "changes": changes,
            "digest": document_digest(after),
            "content": after,
        }

    @staticmethod
    def _read(path: Path) -> str:
        with open(path, "r", encoding="utf-8", newline="") as handle:
            return handle.read()

    def _read_optional(self, path: Path) -> Optional[str]:
        if not path.is_file():
            return None
        return self._read(path)

    @staticmethod
    def _write_atomic(path: Path, content: str) -> None:
        """Write through a temporary sibling file and rename it into place."""
        fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f"{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.write(content)
            os.replace(temp_name, path)
        except Exception:
            with suppress(FileNotFoundError):
                os.unlink(temp_name)
            raise
