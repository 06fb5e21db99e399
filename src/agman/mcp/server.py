"""MCP server exposing agman task management tools."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from mcp.server.fastmcp import Context, FastMCP

from agman.config import Config, get_config
from agman.core import actions
from agman.core import taskfile as taskfile_mod
from agman.core import tasks as tasks_mod
from agman.errors import AgmanError
from agman.store.models import TaskStatus


@dataclass
class AppContext:
    config: Config


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Build the configuration once on startup."""
    config = get_config()
    config.ensure_dirs()
    yield AppContext(config=config)


mcp = FastMCP("agman", lifespan=app_lifespan)


def _cfg(ctx: Context) -> Config:
    return ctx.request_context.lifespan_context.config


def _with_dispatch(task) -> dict:
    result = tasks_mod.task_summary(task)
    result["flow_dispatched"] = actions.dispatch_flow_run(task)
    return result


# ── Task Tools ────────────────────────────────────────────────────────────────


@mcp.tool()
def list_tasks(ctx: Context, status: str | None = None) -> list[dict]:
    """List all tasks, optionally filtered by status (running, stopped, input_needed, on_hold, done, failed)."""
    tasks = tasks_mod.list_tasks(_cfg(ctx))
    if status:
        tasks = [t for t in tasks if t.status.value == status]
    return [tasks_mod.task_summary(t) for t in tasks]


@mcp.tool()
def get_task(ctx: Context, task_id: str) -> dict:
    """Get a task's metadata, plan progress and queued feedback."""
    try:
        task = tasks_mod.load_task(_cfg(ctx), task_id)
    except AgmanError as e:
        return {"error": str(e)}
    result = tasks_mod.task_summary(task)
    plan = taskfile_mod.parse_plan(tasks_mod.read_task_file(task))
    result["plan"] = {"completed": plan.completed, "remaining": plan.remaining}
    result["feedback_queue"] = tasks_mod.read_feedback_queue(task)
    return result


@mcp.tool()
def read_task_file(ctx: Context, task_id: str) -> dict:
    """Read a task's TASK.md."""
    try:
        task = tasks_mod.load_task(_cfg(ctx), task_id)
    except AgmanError as e:
        return {"error": str(e)}
    return {"task_id": task.task_id, "content": tasks_mod.read_task_file(task)}


@mcp.tool()
def create_task(
    ctx: Context,
    repo: str,
    branch: str,
    description: str,
    flow: str = actions.DEFAULT_FLOW,
    review_after: bool = False,
) -> dict:
    """Create a single-repo task: a worktree of `repo` on `branch` plus a tmux session.
    The flow is started in the session's agman window when tmux is available."""
    try:
        task = actions.create_single_repo_task(
            _cfg(ctx), repo, branch, description, flow_name=flow, review_after=review_after
        )
    except AgmanError as e:
        return {"error": str(e)}
    return _with_dispatch(task)


@mcp.tool()
def create_multi_repo_task(
    ctx: Context,
    parent_dir: str,
    branch: str,
    description: str,
    flow: str = actions.DEFAULT_MULTI_FLOW,
) -> dict:
    """Create a task spanning the git repos under `parent_dir`.
    An inspector agent picks the relevant repos before any worktree is created."""
    try:
        task = actions.create_multi_repo_task(
            _cfg(ctx), parent_dir, branch, description, flow_name=flow
        )
    except AgmanError as e:
        return {"error": str(e)}
    return _with_dispatch(task)


@mcp.tool()
def stop_task(ctx: Context, task_id: str) -> dict:
    """Stop a task and interrupt its running agent."""
    try:
        task = actions.stop_task(tasks_mod.load_task(_cfg(ctx), task_id))
    except AgmanError as e:
        return {"error": str(e)}
    return tasks_mod.task_summary(task)


@mcp.tool()
def hold_task(ctx: Context, task_id: str) -> dict:
    """Put a task on hold; its flow stops after the current agent finishes."""
    try:
        task = actions.hold_task(tasks_mod.load_task(_cfg(ctx), task_id))
    except AgmanError as e:
        return {"error": str(e)}
    return tasks_mod.task_summary(task)


@mcp.tool()
def resume_task(ctx: Context, task_id: str) -> dict:
    """Resume a stopped, on-hold or input-needed task at its current step."""
    try:
        task = actions.resume_task(tasks_mod.load_task(_cfg(ctx), task_id))
    except AgmanError as e:
        return {"error": str(e)}
    return _with_dispatch(task)


@mcp.tool()
def queue_feedback(ctx: Context, task_id: str, feedback: str) -> dict:
    """Give a task follow-up feedback.
    Running tasks queue it; otherwise the task continues with it right away."""
    config = _cfg(ctx)
    try:
        task = tasks_mod.load_task(config, task_id)
        if task.status == TaskStatus.RUNNING:
            return {"task_id": task.task_id, "queued": actions.queue_feedback(task, feedback)}
        task = actions.continue_task(config, task, feedback)
    except AgmanError as e:
        return {"error": str(e)}
    return _with_dispatch(task)


@mcp.tool()
def delete_task(ctx: Context, task_id: str, task_only: bool = False) -> dict:
    """Delete a task. Unless task_only, also remove its worktrees, branches and sessions."""
    config = _cfg(ctx)
    mode = actions.DeleteMode.TASK_ONLY if task_only else actions.DeleteMode.EVERYTHING
    try:
        task = tasks_mod.load_task(config, task_id)
        failures = actions.delete_task(config, task, mode)
    except AgmanError as e:
        return {"error": str(e)}
    return {"deleted": task.task_id, "mode": mode.value, "cleanup_failures": failures}


@mcp.tool()
def parse_repos(ctx: Context, text: str) -> list[str]:
    """Extract the repo names listed under '# Repos' in task-file markdown."""
    return taskfile_mod.parse_repos(text)


# ── Notes ─────────────────────────────────────────────────────────────────────


@mcp.tool()
def read_notes(ctx: Context, task_id: str) -> dict:
    """Read a task's notes.md, the scratchpad agents and humans share across runs."""
    try:
        task = tasks_mod.load_task(_cfg(ctx), task_id)
    except AgmanError as e:
        return {"error": str(e)}
    return {"task_id": task.task_id, "notes": tasks_mod.read_notes(task)}


@mcp.tool()
def write_notes(ctx: Context, task_id: str, notes: str) -> dict:
    """Replace a task's notes.md."""
    try:
        task = tasks_mod.load_task(_cfg(ctx), task_id)
    except AgmanError as e:
        return {"error": str(e)}
    tasks_mod.write_notes(task, notes)
    return {"task_id": task.task_id, "updated": True}
