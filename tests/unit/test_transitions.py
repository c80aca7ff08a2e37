"""Unit tests for status transitions on tasks.md text.

Transitions must rewrite only status characters; every other byte of the
document is compared exactly.
"""

import pytest

from tasklens.errors import ConflictError, NotALeafError, TaskNotFoundError
from tasklens.models import TaskStatus
from tasklens.transitions import (
    check_digest,
    document_digest,
    get_task_status,
    handle_failure,
    queue_group,
    set_status,
    update_group_status,
)


DOCUMENT = """# Tasks

- [ ] 1. First group
  - [x] 1.1 Done leaf
  - [ ] 1.2 Open leaf
    - _Requirements: 1.1_
  - [ ]* 1.3 Optional leaf
- [ ] 2. Second group
  - [ ] 2.1 Container
    - [ ] 2.1.1 a
    - [ ] 2.1.2 b
"""


class TestSetStatus:
    """Test cases for the single-character rewrite."""

    def test_rewrites_one_character(self):
        """Test that only the status character changes."""
        updated = set_status(DOCUMENT, "1.2", TaskStatus.COMPLETED)

        assert updated == DOCUMENT.replace("- [ ] 1.2 Open leaf", "- [x] 1.2 Open leaf")
        assert len(updated) == len(DOCUMENT)

    def test_accepts_status_name(self):
        """Test passing the status as a string."""
        updated = set_status(DOCUMENT, "2.1.1", "failed")
        assert get_task_status(updated, "2.1.1") is TaskStatus.FAILED

    def test_keeps_optional_marker(self):
        """Test that optional markers survive a rewrite."""
        updated = set_status(DOCUMENT, "1.3", TaskStatus.IN_PROGRESS)
        assert "  - [-]* 1.3 Optional leaf\n" in updated

    def test_preserves_crlf_line_endings(self):
        """Test that Windows line endings are kept byte for byte."""
        document = "- [ ] 1. Group\r\n  - [ ] 1.1 Leaf\r\n"
        updated = set_status(document, "1.1", TaskStatus.QUEUED)

        assert updated == "- [ ] 1. Group\r\n  - [~] 1.1 Leaf\r\n"

    def test_container_cannot_be_queued(self):
        """Test that queueing a task with sub-tasks raises NotALeafError."""
        with pytest.raises(NotALeafError) as excinfo:
            set_status("- [ ] 1. G\n  - [ ] 1.1 A", "1", TaskStatus.QUEUED)

        assert excinfo.value.task_id == "1"
        with pytest.raises(NotALeafError):
            set_status(DOCUMENT, "2.1", "queued")

    def test_container_accepts_other_statuses(self):
        """Test that containers still take every non-queued status."""
        updated = set_status("- [ ] 1. G\n  - [ ] 1.1 A", "1", TaskStatus.IN_PROGRESS)
        assert updated == "- [-] 1. G\n  - [ ] 1.1 A"

    def test_same_status_is_identity(self):
        """Test that setting the current status returns the same text."""
        assert set_status(DOCUMENT, "1.1", TaskStatus.COMPLETED) == DOCUMENT

    def test_unknown_task_raises(self):
        """Test that a missing identifier raises with the unchanged document."""
        with pytest.raises(TaskNotFoundError) as excinfo:
            set_status(DOCUMENT, "9.9", TaskStatus.COMPLETED)

        assert excinfo.value.task_id == "9.9"
        assert excinfo.value.document == DOCUMENT
        assert isinstance(excinfo.value, LookupError)

    def test_invalid_status_raises(self):
        """Test that an invalid status name is rejected."""
        with pytest.raises(ValueError):
            set_status(DOCUMENT, "1.1", "done")

    def test_duplicate_id_targets_first_line(self):
        """Test that only the first occurrence of a duplicate id changes."""
        document = "- [ ] 1. G\n  - [ ] 1.1 A\n  - [ ] 1.1 B"
        updated = set_status(document, "1.1", TaskStatus.COMPLETED)

        assert updated == "- [ ] 1. G\n  - [x] 1.1 A\n  - [ ] 1.1 B"


class TestDigest:
    """Test cases for optimistic concurrency checks."""

    def test_matching_digest_allows_write(self):
        """Test that the digest of the current text is accepted."""
        updated = set_status(DOCUMENT, "1.2", TaskStatus.COMPLETED, expected_digest=document_digest(DOCUMENT))
        assert get_task_status(updated, "1.2") is TaskStatus.COMPLETED

    def test_stale_digest_raises_conflict(self):
        """Test that a stale digest is refused."""
        stale = document_digest(DOCUMENT)
        changed = set_status(DOCUMENT, "1.2", TaskStatus.COMPLETED)

        with pytest.raises(ConflictError) as excinfo:
            set_status(changed, "1.3", TaskStatus.COMPLETED, expected_digest=stale)

        assert excinfo.value.expected_digest == stale
        assert excinfo.value.actual_digest == document_digest(changed)

    def test_no_digest_skips_check(self):
        """Test that omitting the digest means last writer wins."""
        check_digest(DOCUMENT, None)

    @pytest.mark.parametrize("operation, target", [
        (queue_group, "1"),
        (handle_failure, "1.2"),
        (update_group_status, "2"),
    ])
    def test_composite_operations_check_digest(self, operation, target):
        """Test that composite operations honour the digest too."""
        with pytest.raises(ConflictError):
            operation(DOCUMENT, target, expected_digest="0" * 64)


class TestQueueGroup:
    """Test cases for queueing a group."""

    def test_queues_not_started_leaves(self):
        """Test that open leaves are queued and the group marked in progress."""
        updated = queue_group(DOCUMENT, "1")

        assert get_task_status(updated, "1") is TaskStatus.IN_PROGRESS
        assert get_task_status(updated, "1.1") is TaskStatus.COMPLETED
        assert get_task_status(updated, "1.2") is TaskStatus.QUEUED
        assert get_task_status(updated, "1.3") is TaskStatus.QUEUED
        assert get_task_status(updated, "2.1.1") is TaskStatus.NOT_STARTED
        assert len(updated.split("\n")) == len(DOCUMENT.split("\n"))

    def test_containers_are_not_queued(self):
        """Test that only leaves receive the queued marker."""
        updated = queue_group(DOCUMENT, "2")

        assert get_task_status(updated, "2.1") is TaskStatus.NOT_STARTED
        assert get_task_status(updated, "2.1.1") is TaskStatus.QUEUED
        assert get_task_status(updated, "2.1.2") is TaskStatus.QUEUED

    def test_synthetic_group(self):
        """Test queueing a group inferred from depth-2 tasks."""
        document = "- [x] 3.1 A\n- [ ] 3.2 B"
        assert queue_group(document, "3") == "- [x] 3.1 A\n- [~] 3.2 B"

    def test_unknown_group_raises(self):
        """Test that a missing group raises."""
        with pytest.raises(TaskNotFoundError):
            queue_group(DOCUMENT, "7")


class TestHandleFailure:
    """Test cases for failure handling."""

    def test_fails_leaf_and_group_and_reverts_queue(self):
        """Test the three effects of a leaf failure."""
        queued = queue_group(DOCUMENT, "1")
        updated = handle_failure(queued, "1.2")

        assert get_task_status(updated, "1.2") is TaskStatus.FAILED
        assert get_task_status(updated, "1") is TaskStatus.FAILED
        assert get_task_status(updated, "1.3") is TaskStatus.NOT_STARTED
        assert get_task_status(updated, "1.1") is TaskStatus.COMPLETED

    def test_other_groups_untouched(self):
        """Test that queued leaves of other groups stay queued."""
        queued = queue_group(queue_group(DOCUMENT, "1"), "2")
        updated = handle_failure(queued, "1.2")

        assert get_task_status(updated, "2.1.1") is TaskStatus.QUEUED
        assert get_task_status(updated, "2") is TaskStatus.IN_PROGRESS

    def test_container_is_rejected(self):
        """Test that failing a container raises NotALeafError."""
        with pytest.raises(NotALeafError):
            handle_failure(DOCUMENT, "2.1")

    def test_unknown_task_raises(self):
        """Test that a missing task raises."""
        with pytest.raises(TaskNotFoundError):
            handle_failure(DOCUMENT, "5.5")

    def test_synthetic_group_has_no_group_line(self):
        """Test failure handling in an inferred group."""
        document = "- [~] 3.1 A\n- [~] 3.2 B\n- [~] 4.1 C"
        assert handle_failure(document, "3.1") == "- [!] 3.1 A\n- [ ] 3.2 B\n- [~] 4.1 C"


class TestUpdateGroupStatus:
    """Test cases for recomputing a group checkbox."""

    @pytest.mark.parametrize("leaves, expected", [
        (("x", "x", "x"), TaskStatus.COMPLETED),
        (("x", " ", " "), TaskStatus.IN_PROGRESS),
        (("x", "-", " "), TaskStatus.IN_PROGRESS),
        (("x", "!", "-"), TaskStatus.FAILED),
        ((" ", " ", "~"), TaskStatus.NOT_STARTED),
    ])
    def test_group_status_from_leaves(self, leaves, expected):
        """Test the group checkbox computed from leaf markers."""
        document = (
            "- [x] 1. Group\n"
            f"  - [{leaves[0]}] 1.1 a\n"
            f"  - [{leaves[1]}] 1.2 b\n"
            f"  - [{leaves[2]}] 1.3 c"
        )
        updated = update_group_status(document, "1")
        assert get_task_status(updated, "1") is expected

    def test_group_without_leaves_is_unchanged(self):
        """Test that a childless group keeps its checkbox."""
        document = "- [x] 1. Lonely\n- [ ] 2. Other"
        assert update_group_status(document, "1") == document

    def test_unknown_group_raises(self):
        """Test that a missing group raises."""
        with pytest.raises(TaskNotFoundError):
            update_group_status(DOCUMENT, "8")
