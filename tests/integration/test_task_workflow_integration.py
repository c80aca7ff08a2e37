"""
Integration test for the task execution workflow.

Drives the MCP server tools end to end against a project directory:
discover specs, summarize, queue a group, complete and fail tasks, and
verify the document on disk after each step.
"""

import pytest

import main
from tasklens.errors import ConflictError, TaskNotFoundError


TASKS = """# Implementation Plan

- [ ] 1. Core engine
  - [ ] 1.1 Parser
    - [ ] 1.1.1 Tokenizer
      - _Requirements: 1.1_
    - [ ] 1.1.2 Hierarchy
      - _Requirements: 1.2_
    - [ ] 1.1.3 Synthetic groups
  - [ ] 1.2 Aggregator
    - _Requirements: 2.1, 9.9_

- [ ] 2. Server
  - [ ] 2.1 Tools
  - [ ]* 2.2 Resource
"""

REQUIREMENTS = """# Requirements Document

Task checklist engine for spec-driven projects.

### Requirement 1: Parsing

#### Acceptance Criteria

1. WHEN a task line is read THEN the parser SHALL tokenize it
2. WHEN identifiers nest THEN the tree SHALL follow them

### Requirement 2: Aggregation

#### Acceptance Criteria

1. WHEN all leaves are done THEN the group SHALL be complete
"""


class TestTaskWorkflowIntegration:
    """Integration tests for the complete task workflow."""

    @pytest.fixture
    def project(self, tmp_path):
        """Create a project with one spec."""
        spec_dir = tmp_path / ".kiro" / "specs" / "engine"
        spec_dir.mkdir(parents=True)
        (spec_dir / "tasks.md").write_text(TASKS, encoding="utf-8")
        (spec_dir / "requirements.md").write_text(REQUIREMENTS, encoding="utf-8")
        (spec_dir / "design.md").write_text("# Design\n\nOne engine, one server.\n", encoding="utf-8")
        return tmp_path

    def _tasks(self, project):
        return (project / ".kiro" / "specs" / "engine" / "tasks.md").read_text(encoding="utf-8")

    def test_complete_workflow(self, project):
        """Test queueing, executing and completing a group."""
        root = str(project)

        specs = main.list_specs(root=root)["specs"]
        assert specs[0]["name"] == "engine"
        assert specs[0]["description"] == "Task checklist engine for spec-driven projects."
        assert (specs[0]["tasks_total"], specs[0]["tasks_completed"]) == (9, 0)

        summary = main.summarize_tasks("engine", root=root)
        group = summary["groups"][0]
        assert group["progress"] == "0/2 done"
        assert group["display"] == "actionable"
        assert group["actions"][0]["kind"] == "start_group"
        assert summary["all_completed"] is False

        queued = main.queue_group("engine", "1", root=root)
        assert queued["next_task"]["id"] == "1.1.1"
        assert "- [-] 1. Core engine" in self._tasks(project)
        assert "    - [~] 1.1.1 Tokenizer" in self._tasks(project)

        for task_id in ("1.1.1", "1.1.2", "1.1.3", "1.2"):
            main.set_task_status("engine", task_id, "in_progress", root=root)
            result = main.set_task_status("engine", task_id, "completed", root=root)
            assert result["old_status"] == "in_progress"
            verification = main.verify_task_status("engine", task_id, "completed", root=root)
            assert verification["passed"] is True

        assert main.next_task("engine", "1", root=root)["task"] is None

        updated = main.update_group_status("engine", "1", root=root)
        assert updated["status"] == "completed"

        group = main.summarize_tasks("engine", root=root)["groups"][0]
        assert group["display"] == "complete"
        assert group["progress"] == "2/2 done"
        assert len(self._tasks(project).split("\n")) == len(TASKS.split("\n"))

    def test_failure_workflow(self, project):
        """Test that a failure blocks later siblings and releases the queue."""
        root = str(project)
        main.queue_group("engine", "1", root=root)
        main.set_task_status("engine", "1.1.1", "completed", root=root)

        result = main.handle_task_failure("engine", "1.1.2", root=root)
        assert result["group_id"] == "1"
        assert "content" not in result

        content = self._tasks(project)
        assert "- [!] 1. Core engine" in content
        assert "    - [!] 1.1.2 Hierarchy" in content
        assert "    - [ ] 1.1.3 Synthetic groups" in content
        assert "  - [ ] 1.2 Aggregator" in content

        group = main.summarize_tasks("engine", root=root)["groups"][0]
        assert group["display"] == "failed"
        assert group["blocked_by"] == "1.1.2"
        leaves = {leaf["task_id"]: leaf for leaf in group["leaves"]}
        assert leaves["1.1.3"]["blocked_by"] == "1.1.2"
        assert [action["kind"] for action in leaves["1.1.2"]["actions"]] == ["retry", "fix"]

        assert main.next_task("engine", "1", root=root)["task"]["id"] == "1.2"

    def test_requirement_validation(self, project):
        """Test reporting unresolved requirement references."""
        result = main.validate_requirements("engine", root=str(project))

        assert result["valid"] is False
        assert result["unresolved"] == [{"task_id": "1.2", "missing_ids": ["9.9"]}]

    def test_task_tree(self, project):
        """Test the parsed tree and digest returned to clients."""
        tree = main.get_task_tree("engine", root=str(project))

        assert [node["id"] for node in tree["tasks"]] == ["1", "2"]
        assert tree["tasks"][1]["children"][1]["is_optional"] is True
        assert len(tree["digest"]) == 64

    def test_stale_digest_is_rejected(self, project):
        """Test that concurrent edits are detected through the digest."""
        root = str(project)
        digest = main.get_task_tree("engine", root=root)["digest"]
        main.set_task_status("engine", "2.1", "completed", root=root)

        with pytest.raises(ConflictError):
            main.set_task_status("engine", "2.2", "completed", expected_digest=digest, root=root)

        fresh = main.get_task_tree("engine", root=root)["digest"]
        result = main.set_task_status("engine", "2.2", "completed", expected_digest=fresh, root=root)
        assert result["changed"] is True

    def test_unknown_task(self, project):
        """Test that an unknown task id surfaces as TaskNotFoundError."""
        with pytest.raises(TaskNotFoundError):
            main.set_task_status("engine", "3.1", "completed", root=str(project))


class TestRootResolution:
    """Integration tests for locating the project root."""

    def test_root_from_environment(self, tmp_path, monkeypatch):
        """Test resolving the root from TASKLENS_PROJECT_ROOT."""
        (tmp_path / ".kiro" / "specs" / "demo").mkdir(parents=True)
        monkeypatch.setenv("TASKLENS_PROJECT_ROOT", str(tmp_path))

        assert [spec["name"] for spec in main.list_specs()["specs"]] == ["demo"]

    def test_root_detected_from_working_directory(self, tmp_path, monkeypatch):
        """Test finding the nearest directory that holds the specs path."""
        (tmp_path / ".kiro" / "specs" / "demo").mkdir(parents=True)
        nested = tmp_path / "src" / "pkg"
        nested.mkdir(parents=True)
        monkeypatch.delenv("TASKLENS_PROJECT_ROOT", raising=False)
        monkeypatch.delenv("TASKLENS_SPECS_PATH", raising=False)
        monkeypatch.chdir(nested)

        assert main.list_specs()["specs_dir"] == str(tmp_path.resolve() / ".kiro" / "specs")

    def test_missing_root_argument(self, tmp_path):
        """Test that a nonexistent root is rejected."""
        with pytest.raises(ValueError, match="does not exist"):
            main.list_specs(root=str(tmp_path / "missing"))

    def test_resource_lists_specs(self, tmp_path, monkeypatch):
        """Test the specs resource text."""
        spec_dir = tmp_path / ".kiro" / "specs" / "demo"
        spec_dir.mkdir(parents=True)
        (spec_dir / "tasks.md").write_text("- [x] 1. G\n  - [ ] 1.1 A\n", encoding="utf-8")
        monkeypatch.setenv("TASKLENS_PROJECT_ROOT", str(tmp_path))

        text = main.resource_specs()

        assert text.startswith("tasklens specs")
        assert "- demo: 1/2 tasks completed" in text
