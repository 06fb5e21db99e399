"""Tests for task use cases: create, delete and status changes."""

import pytest

from agman.config import Config
from agman.core import actions
from agman.core import tasks as tasks_mod
from agman.errors import GitError, ParseError, ResourceError, StateError
from agman.store.models import RepoEntry, TaskStatus

from conftest import git_branches, make_git_repo


class TestCreate:
    def test_single_repo(self, config, git_repo, fake_tmux):
        task = actions.create_single_repo_task(config, "app", "feat", "Add login", review_after=True)
        assert task.task_id == "app--feat"
        assert task.flow_name == "new"
        assert task.review_after
        assert not task.is_multi_repo()
        entry = task.primary_repo()
        assert entry.worktree_path == config.worktree_path("app", "feat")
        assert entry.worktree_path.is_dir()
        assert entry.tmux_session == "(app)__feat"
        assert fake_tmux.created == ["(app)__feat"]
        assert tasks_mod.load_task(config, "app--feat") == task

    def test_missing_repo_writes_nothing(self, config, fake_tmux):
        with pytest.raises(GitError):
            actions.create_single_repo_task(config, "nope", "feat", "x")
        assert not config.task_dir("nope", "feat").exists()
        assert fake_tmux.created == []

    def test_unknown_flow(self, config, git_repo, fake_tmux):
        with pytest.raises(ParseError):
            actions.create_single_repo_task(config, "app", "feat", "x", flow_name="bogus")

    def test_duplicate(self, config, git_repo, fake_tmux):
        actions.create_single_repo_task(config, "app", "feat", "x")
        with pytest.raises(StateError):
            actions.create_single_repo_task(config, "app", "feat", "y")

    def test_multi_repo(self, config, fake_tmux):
        make_git_repo(config.repos_dir / "svcA")
        task = actions.create_multi_repo_task(config, config.repos_dir, "feat", "Cross-service auth")
        assert task.task_id == "repos--feat"
        assert task.flow_name == "new-multi"
        assert task.is_multi_repo()
        assert task.repos == []
        assert task.parent_dir == config.repos_dir.resolve()
        assert fake_tmux.created == ["(repos)__feat"]
        assert fake_tmux.sessions["(repos)__feat"] == config.repos_dir.resolve()

    def test_multi_repo_missing_parent(self, config, workspace, fake_tmux):
        with pytest.raises(ResourceError):
            actions.create_multi_repo_task(config, workspace / "missing", "feat", "x")


class TestDelete:
    def test_everything(self, config, git_repo, fake_tmux):
        task = actions.create_single_repo_task(config, "app", "feat", "x")
        wt = task.primary_repo().worktree_path
        assert actions.delete_task(config, task, actions.DeleteMode.EVERYTHING) == []
        assert not task.dir.exists()
        assert not wt.exists()
        assert "feat" not in git_branches(git_repo)
        assert fake_tmux.killed == ["(app)__feat"]

    def test_task_only(self, config, git_repo, fake_tmux):
        task = actions.create_single_repo_task(config, "app", "feat", "x")
        wt = task.primary_repo().worktree_path
        assert actions.delete_task(config, task, actions.DeleteMode.TASK_ONLY) == []
        assert not task.dir.exists()
        assert wt.is_dir()
        assert "feat" in git_branches(git_repo)
        assert fake_tmux.killed == []

    def test_failures_do_not_keep_task(self, config, fake_tmux):
        task = tasks_mod.create_task(
            config, "gone", "feat", "x", "new",
            repos=[RepoEntry("gone", config.worktree_path("gone", "feat"), "(gone)__feat")],
        )
        failures = actions.delete_task(config, task, actions.DeleteMode.EVERYTHING)
        assert failures
        assert not task.dir.exists()


@pytest.fixture
def task(config, git_repo, fake_tmux):
    return actions.create_single_repo_task(config, "app", "feat", "x")


class TestStatusChanges:
    def test_stop_interrupts_agman_window(self, task, fake_tmux):
        tasks_mod.update_agent(task, "coder")
        actions.stop_task(task)
        saved = tasks_mod.reload_task(task)
        assert saved.status == TaskStatus.STOPPED
        assert saved.current_agent is None
        assert fake_tmux.keys == [("(app)__feat", "agman", "C-c")]

    def test_stop_without_session(self, task, fake_tmux):
        fake_tmux.kill_session("(app)__feat")
        actions.stop_task(task)
        assert tasks_mod.reload_task(task).status == TaskStatus.STOPPED
        assert fake_tmux.keys == []

    def test_hold_and_resume(self, task):
        actions.hold_task(task)
        assert tasks_mod.reload_task(task).status == TaskStatus.ON_HOLD
        actions.resume_task(task)
        assert tasks_mod.reload_task(task).status == TaskStatus.RUNNING

    def test_cannot_hold_done_task(self, task):
        tasks_mod.update_status(task, TaskStatus.DONE)
        with pytest.raises(StateError):
            actions.hold_task(task)

    def test_resume_only_paused(self, task):
        with pytest.raises(StateError):
            actions.resume_task(task)
        tasks_mod.update_status(task, TaskStatus.FAILED)
        with pytest.raises(StateError):
            actions.resume_task(task)

    def test_restart(self, config, task):
        tasks_mod.set_flow_step(task, 3)
        tasks_mod.update_status(task, TaskStatus.FAILED)
        actions.restart_task(config, task, 1)
        saved = tasks_mod.reload_task(task)
        assert saved.flow_step == 1
        assert saved.status == TaskStatus.RUNNING

    def test_restart_out_of_range(self, config, task):
        with pytest.raises(StateError, match="out of range"):
            actions.restart_task(config, task, 4)
        with pytest.raises(StateError):
            actions.restart_task(config, task, -1)


class TestContinue:
    def test_switches_to_continue_flow(self, config, task):
        tasks_mod.set_flow_step(task, 3)
        tasks_mod.update_status(task, TaskStatus.DONE)
        actions.continue_task(config, task, "Also handle logout")
        saved = tasks_mod.reload_task(task)
        assert saved.flow_name == "continue"
        assert saved.flow_step == 0
        assert saved.status == TaskStatus.RUNNING
        assert tasks_mod.read_feedback(saved) == "Also handle logout"
        assert "Also handle logout" in tasks_mod.read_agent_log(saved)

    def test_uses_existing_feedback_file(self, config, task):
        tasks_mod.update_status(task, TaskStatus.DONE)
        tasks_mod.write_feedback(task, "from the file")
        actions.continue_task(config, task)
        assert tasks_mod.reload_task(task).flow_name == "continue"

    def test_requires_feedback(self, config, task):
        tasks_mod.update_status(task, TaskStatus.DONE)
        with pytest.raises(StateError, match="No feedback"):
            actions.continue_task(config, task)

    def test_running_task_rejected(self, config, task):
        with pytest.raises(StateError):
            actions.continue_task(config, task, "more")


class TestFeedbackQueue:
    def test_queue_and_apply(self, task):
        assert actions.queue_feedback(task, "first") == 1
        assert actions.queue_feedback(task, "second") == 2
        assert actions.pop_and_apply_feedback(task) == "first"
        assert tasks_mod.read_feedback(task) == "first"
        assert tasks_mod.read_feedback_queue(task) == ["second"]

    def test_empty_queue(self, task):
        assert actions.pop_and_apply_feedback(task) is None
        assert tasks_mod.read_feedback(task) == ""


class TestLocation:
    def test_single_repo(self, task):
        assert actions.working_dir(task) == task.primary_repo().worktree_path
        assert actions.attach_target(task) == "(app)__feat"

    def test_multi_repo(self, config, fake_tmux):
        task = actions.create_multi_repo_task(config, config.repos_dir, "feat", "x")
        assert actions.working_dir(task) == config.repos_dir.resolve()
        assert actions.attach_target(task) == Config.tmux_session_name("repos", "feat")

    def test_dispatch_flow_run(self, task, fake_tmux):
        assert actions.dispatch_flow_run(task)
        assert fake_tmux.keys == [("(app)__feat", "agman", "agman flow-run app--feat")]

    def test_dispatch_without_session(self, task, fake_tmux):
        fake_tmux.kill_session("(app)__feat")
        assert not actions.dispatch_flow_run(task)
