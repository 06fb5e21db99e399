"""Tests for the MCP server tools, called directly with a stub context."""

from types import SimpleNamespace

import pytest

from agman.core import tasks as tasks_mod
from agman.mcp import server
from agman.store.models import TaskStatus


@pytest.fixture
def ctx(config):
    return SimpleNamespace(
        request_context=SimpleNamespace(lifespan_context=server.AppContext(config=config))
    )


@pytest.fixture
def task(ctx, git_repo, fake_tmux):
    result = server.create_task(ctx, "app", "feat", "Add login")
    assert "error" not in result
    return result


class TestTools:
    def test_create_dispatches_flow(self, task, fake_tmux):
        assert task["task_id"] == "app--feat"
        assert task["flow_dispatched"] is True
        assert fake_tmux.keys == [("(app)__feat", "agman", "agman flow-run app--feat")]

    def test_create_error(self, ctx, fake_tmux):
        assert "error" in server.create_task(ctx, "nope", "feat", "x")

    def test_list_and_filter(self, ctx, task):
        assert [t["task_id"] for t in server.list_tasks(ctx)] == ["app--feat"]
        assert server.list_tasks(ctx, status="done") == []

    def test_get_task(self, ctx, task):
        result = server.get_task(ctx, "app--feat")
        assert result["status"] == "running"
        assert result["plan"] == {"completed": [], "remaining": []}
        assert result["feedback_queue"] == []

    def test_get_missing(self, ctx):
        assert "error" in server.get_task(ctx, "nope--feat")

    def test_read_task_file(self, ctx, task):
        assert server.read_task_file(ctx, "app--feat")["content"].startswith("# Goal\nAdd login")

    def test_status_tools(self, ctx, task, config):
        assert server.hold_task(ctx, "app--feat")["status"] == "on_hold"
        assert server.resume_task(ctx, "app--feat")["status"] == "running"
        assert server.stop_task(ctx, "app--feat")["status"] == "stopped"
        assert "error" in server.hold_task(ctx, "nope--feat")

    def test_feedback_queued_while_running(self, ctx, task):
        assert server.queue_feedback(ctx, "app--feat", "more tests") == {
            "task_id": "app--feat",
            "queued": 1,
        }

    def test_feedback_continues_done_task(self, ctx, task, config):
        tasks_mod.update_status(tasks_mod.load_task(config, "app--feat"), TaskStatus.DONE)
        result = server.queue_feedback(ctx, "app--feat", "more tests")
        assert result["flow_name"] == "continue"
        assert result["status"] == "running"

    def test_create_multi_repo(self, ctx, config, fake_tmux):
        result = server.create_multi_repo_task(ctx, str(config.repos_dir), "feat", "x")
        assert result["task_id"] == "repos--feat"
        assert result["repos"] == []

    def test_delete(self, ctx, task, config):
        result = server.delete_task(ctx, "app--feat")
        assert result == {"deleted": "app--feat", "mode": "everything", "cleanup_failures": []}
        assert not config.task_dir("app", "feat").exists()

    def test_parse_repos(self, ctx):
        assert server.parse_repos(ctx, "# Repos\n- svcA: api\n- svcB\n") == ["svcA", "svcB"]


class TestNotes:
    def test_write_then_read(self, ctx, task):
        assert server.read_notes(ctx, "app--feat")["notes"] == ""
        assert server.write_notes(ctx, "app--feat", "Login uses bcrypt\n") == {
            "task_id": "app--feat", "updated": True,
        }
        assert server.read_notes(ctx, "app--feat")["notes"] == "Login uses bcrypt\n"

    def test_missing_task(self, ctx):
        assert "error" in server.read_notes(ctx, "ghost--feat")
        assert "error" in server.write_notes(ctx, "ghost--feat", "x")
