"""MCP server exposing tasks.md status tools."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from tasklens import TaskStatus, Workspace, document_digest, parse
from tasklens.tasklens_logging import setup_logging

mcp = FastMCP("tasklens")


SERVER_ROOT = Path(__file__).resolve().parent
PROJECT_ROOT_ENV = "TASKLENS_PROJECT_ROOT"


def _specs_path() -> str:
    return os.getenv(Workspace.SPECS_PATH_ENV) or Workspace.DEFAULT_SPECS_PATH


def _candidate_bases() -> List[Path]:
    cwd = Path.cwd().resolve()
    bases: List[Path] = [cwd]
    bases.extend(cwd.parents)
    if SERVER_ROOT not in bases:
        bases.append(SERVER_ROOT)
    return bases


def _locate_workspace_root() -> Optional[Path]:
    specs_path = _specs_path()
    for base in _candidate_bases():
        if (base / specs_path).is_dir():
            return base
    return None


def _resolve_root(root: Optional[str]) -> Path:
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    env_root = os.getenv(PROJECT_ROOT_ENV)
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.exists():
            raise ValueError(
                f"Environment variable {PROJECT_ROOT_ENV} points to '{env_root}', which does not exist."
            )
        return env_path

    detected_root = _locate_workspace_root()
    if detected_root:
        return detected_root

    raise ValueError(
        "Unable to determine project root automatically. Provide the 'root' argument when calling the tool "
        f"or set the {PROJECT_ROOT_ENV} environment variable."
    )


def _workspace(root: Optional[str]) -> Workspace:
    return Workspace(_resolve_root(root))


def _workspace_optional(root: Optional[str]) -> Optional[Workspace]:
    try:
        return _workspace(root)
    except ValueError:
        return None


def _transition_result(result: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in result.items() if key != "content"}


@mcp.tool()
def list_specs(root: Optional[str] = None) -> Dict[str, Any]:
    """Enumerate spec directories with their document and task progress."""

    workspace = _workspace(root)
    return {"specs_dir": str(workspace.specs_dir), "specs": workspace.list_specs()}


@mcp.resource("tasklens://specs")
def resource_specs() -> str:
    """Resource view listing specs and their task progress."""

    workspace = _workspace_optional(None)
    if not workspace:
        return f"No project root detected. Launch tools with a 'root' argument or set {PROJECT_ROOT_ENV}."

    specs = workspace.list_specs()
    if not specs:
        return "No specs found."

    lines = ["tasklens specs"]
    for spec in specs:
        lines.append("")
        lines.append(f"- {spec['name']}: {spec['tasks_completed']}/{spec['tasks_total']} tasks completed")
        if spec["description"]:
            lines.append(f"  {spec['description']}")
    return "\n".join(lines)


@mcp.tool()
def get_task_tree(spec_name: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Parse a spec's tasks.md into its task tree."""

    workspace = _workspace(root)
    content = workspace.read_tasks(spec_name)
    forest = parse(content)
    return {
        "spec_name": spec_name,
        "tasks_path": str(workspace.tasks_path(spec_name)),
        "digest": document_digest(content),
        "tasks": [node.to_dict() for node in forest],
    }


@mcp.tool()
def summarize_tasks(spec_name: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Summarize every group: progress counters, display decision, actions and warnings."""

    workspace = _workspace(root)
    summaries = workspace.summarize(spec_name)
    return {
        "spec_name": spec_name,
        "groups": [summary.to_dict() for summary in summaries],
        "all_completed": bool(summaries) and all(summary.is_complete for summary in summaries),
    }


@mcp.tool()
def set_task_status(
    spec_name: str,
    task_id: str,
    status: str,
    expected_digest: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Set one task's checkbox. Status is one of not_started, in_progress, completed, failed, queued."""

    workspace = _workspace(root)
    result = workspace.set_task_status(spec_name, task_id, status, expected_digest=expected_digest)
    return _transition_result(result)


@mcp.tool()
def queue_group(
    spec_name: str,
    group_id: str,
    expected_digest: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Queue every not-started task of a group and mark the group in progress."""

    workspace = _workspace(root)
    result = workspace.queue_group(spec_name, group_id, expected_digest=expected_digest)
    next_item = workspace.next_task(spec_name, group_id)
    payload = _transition_result(result)
    payload["next_task"] = next_item.to_dict() if next_item else None
    return payload


@mcp.tool()
def handle_task_failure(
    spec_name: str,
    task_id: str,
    expected_digest: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Mark a task failed, fail its group and release the group's other queued tasks."""

    workspace = _workspace(root)
    result = workspace.handle_task_failure(spec_name, task_id, expected_digest=expected_digest)
    return _transition_result(result)


@mcp.tool()
def update_group_status(
    spec_name: str,
    group_id: str,
    expected_digest: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Recompute a group's checkbox from the statuses of its tasks."""

    workspace = _workspace(root)
    result = workspace.update_group_status(spec_name, group_id, expected_digest=expected_digest)
    return _transition_result(result)


@mcp.tool()
def validate_requirements(spec_name: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Report requirement references in tasks.md that requirements.md does not define."""

    workspace = _workspace(root)
    unresolved = workspace.validate_requirements(spec_name)
    return {
        "spec_name": spec_name,
        "valid": not unresolved,
        "unresolved": [item.to_dict() for item in unresolved],
    }


@mcp.tool()
def next_task(spec_name: str, group_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Retrieve the next executable task of a group, skipping tasks blocked by a failure."""

    workspace = _workspace(root)
    task = workspace.next_task(spec_name, group_id)
    return {
        "spec_name": spec_name,
        "group_id": group_id,
        "task": task.to_dict() if task else None,
    }


@mcp.tool()
def verify_task_status(
    spec_name: str,
    task_id: str,
    expected_status: str,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Check that a task carries the expected status in tasks.md."""

    workspace = _workspace(root)
    checks = workspace.verify_task_status(spec_name, task_id, TaskStatus.parse(expected_status))
    return {
        "spec_name": spec_name,
        "task_id": task_id,
        "passed": all(check.passed for check in checks),
        "checks": [check.to_dict() for check in checks],
    }


def main() -> None:
    log_file = os.getenv("TASKLENS_LOG_FILE")
    setup_logging(os.getenv("TASKLENS_LOG_LEVEL", "INFO").upper(), Path(log_file) if log_file else None)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
