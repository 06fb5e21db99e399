"""Tests for the task store."""

import json
from pathlib import Path

import pytest

from agman.core import tasks as tasks_mod
from agman.errors import StateError, TaskNotFound
from agman.store.models import RepoEntry, TaskStatus


def _entry(name="app", branch="feat"):
    return RepoEntry(
        repo_name=name,
        worktree_path=Path(f"/repos/{name}-wt/{branch}"),
        tmux_session=f"({name})__{branch}",
    )


class TestTaskCRUD:
    def test_create_task(self, config):
        task = tasks_mod.create_task(config, "app", "feat", "Add login", "new", repos=[_entry()])
        assert task.task_id == "app--feat"
        assert task.status == TaskStatus.RUNNING
        assert task.flow_step == 0
        assert task.dir == config.tasks_dir / "app--feat"
        assert (task.dir / "meta.json").exists()
        assert (task.dir / "notes.md").exists()
        assert (task.dir / "agent.log").exists()
        assert tasks_mod.read_task_file(task) == (
            "# Goal\nAdd login\n\n# Plan\n(To be created by planner agent)\n"
        )

    def test_create_duplicate_fails(self, config):
        tasks_mod.create_task(config, "app", "feat", "x", "new")
        with pytest.raises(StateError):
            tasks_mod.create_task(config, "app", "feat", "y", "new")

    def test_slash_branch_gives_flat_dir(self, config):
        task = tasks_mod.create_task(config, "app", "feature/login", "x", "new")
        assert task.dir.parent == config.tasks_dir
        assert task.dir.name == "app--feature-login"
        assert tasks_mod.load_task(config, "app--feature-login").branch_name == "feature/login"

    def test_round_trip(self, config):
        task = tasks_mod.create_task(
            config, "repos", "feat", "x", "new-multi",
            repos=[_entry("svcA"), _entry("svcB")],
            parent_dir=Path("/work/repos"),
            review_after=True,
        )
        task.current_agent = "planner"
        task.flow_step = 3
        task.last_review_count = 2
        tasks_mod.set_linked_pr(task, 42, "https://example.com/pr/42", owned=False, author="octo")

        loaded = tasks_mod.load_task(config, "repos--feat")
        assert loaded == task

    def test_load_missing(self, config):
        with pytest.raises(TaskNotFound):
            tasks_mod.load_task(config, "nope--feat")

    def test_load_by_branch(self, config):
        tasks_mod.create_task(config, "app", "feat", "x", "new")
        assert tasks_mod.load_task(config, "feat").task_id == "app--feat"

    def test_load_by_ambiguous_branch(self, config):
        tasks_mod.create_task(config, "app", "feat", "x", "new")
        tasks_mod.create_task(config, "api", "feat", "x", "new")
        with pytest.raises(TaskNotFound, match="Ambiguous"):
            tasks_mod.load_task(config, "feat")

    def test_corrupt_meta(self, config):
        task = tasks_mod.create_task(config, "app", "feat", "x", "new")
        (task.dir / "meta.json").write_text("{not json")
        with pytest.raises(StateError):
            tasks_mod.load_task(config, "app--feat")

    def test_incompatible_meta(self, config):
        task = tasks_mod.create_task(config, "app", "feat", "x", "new")
        (task.dir / "meta.json").write_text(json.dumps({"name": "app"}))
        with pytest.raises(StateError):
            tasks_mod.load_task(config, "app--feat")

    def test_list_skips_unreadable(self, config):
        tasks_mod.create_task(config, "app", "feat", "x", "new")
        broken = tasks_mod.create_task(config, "api", "feat", "x", "new")
        (broken.dir / "meta.json").write_text("")
        assert [t.task_id for t in tasks_mod.list_tasks(config)] == ["app--feat"]

    def test_list_sorted_by_status(self, config):
        done = tasks_mod.create_task(config, "a", "one", "x", "new")
        tasks_mod.update_status(done, TaskStatus.DONE)
        stopped = tasks_mod.create_task(config, "b", "two", "x", "new")
        tasks_mod.update_status(stopped, TaskStatus.STOPPED)
        tasks_mod.create_task(config, "c", "three", "x", "new")
        ids = [t.task_id for t in tasks_mod.list_tasks(config)]
        assert ids == ["c--three", "b--two", "a--one"]

    def test_delete_task_dir(self, config):
        task = tasks_mod.create_task(config, "app", "feat", "x", "new")
        tasks_mod.delete_task_dir(task)
        assert not task.dir.exists()


class TestStatus:
    def test_stopped_resets_seen(self, config):
        task = tasks_mod.create_task(config, "app", "feat", "x", "new")
        task.seen = True
        tasks_mod.update_status(task, TaskStatus.STOPPED)
        assert tasks_mod.reload_task(task).seen is False

    def test_update_stamps_time(self, config):
        task = tasks_mod.create_task(config, "app", "feat", "x", "new")
        before = task.updated_at
        tasks_mod.set_flow_step(task, 2)
        reloaded = tasks_mod.reload_task(task)
        assert reloaded.flow_step == 2
        assert reloaded.updated_at >= before

    def test_primary_repo_requires_repos(self, config):
        task = tasks_mod.create_task(config, "repos", "feat", "x", "new-multi", parent_dir=Path("/w"))
        assert task.is_multi_repo()
        assert not task.has_repos()
        with pytest.raises(StateError):
            task.primary_repo()


class TestFeedback:
    def test_queue_is_fifo(self, config):
        task = tasks_mod.create_task(config, "app", "feat", "x", "new")
        assert tasks_mod.queue_feedback(task, "first") == 1
        assert tasks_mod.queue_feedback(task, "second") == 2
        assert tasks_mod.pop_feedback_queue(task) == "first"
        assert tasks_mod.read_feedback_queue(task) == ["second"]
        assert tasks_mod.pop_feedback_queue(task) == "second"
        assert tasks_mod.pop_feedback_queue(task) is None

    def test_remove_and_clear(self, config):
        task = tasks_mod.create_task(config, "app", "feat", "x", "new")
        for item in ("a", "b", "c"):
            tasks_mod.queue_feedback(task, item)
        tasks_mod.remove_feedback_queue_item(task, 1)
        assert tasks_mod.read_feedback_queue(task) == ["a", "c"]
        tasks_mod.clear_feedback_queue(task)
        assert tasks_mod.read_feedback_queue(task) == []

    def test_feedback_file(self, config):
        task = tasks_mod.create_task(config, "app", "feat", "x", "new")
        tasks_mod.write_feedback(task, "please add tests")
        assert tasks_mod.read_feedback(task) == "please add tests"
        tasks_mod.clear_feedback(task)
        assert tasks_mod.read_feedback(task) == ""

    def test_feedback_logged(self, config):
        task = tasks_mod.create_task(config, "app", "feat", "x", "new")
        tasks_mod.append_feedback_to_log(task, "more tests")
        log = tasks_mod.read_agent_log(task)
        assert "--- User feedback at" in log
        assert "more tests" in log
