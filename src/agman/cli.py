"""CLI entry point for agman."""

import json
import logging
import sys

import click

from agman.config import get_config, save_config_file
from agman.core import actions
from agman.core import commands as commands_mod
from agman.core import taskfile as taskfile_mod
from agman.core import tasks as tasks_mod
from agman.core import worktrees as worktrees_mod
from agman.core.agents import process_invoker
from agman.core.flows import load_flow_by_name
from agman.core.runner import FlowRunner
from agman.errors import AgmanError
from agman.integrations import slack as slack_mod
from agman.integrations import tmux
from agman.store.models import TaskStatus


def _fail(message: str):
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _load(config, task_id: str):
    try:
        return tasks_mod.load_task(config, task_id)
    except AgmanError as e:
        _fail(str(e))


def _start_flow(task, no_run: bool):
    if no_run:
        click.echo(f"Run the flow with: agman flow-run {task.task_id}")
    elif actions.dispatch_flow_run(task):
        click.echo(f"Flow started in tmux. To watch: agman attach {task.task_id}")
    else:
        click.echo(f"No tmux session for this task; run the flow with: agman flow-run {task.task_id}")


def _make_runner(config) -> FlowRunner:
    return FlowRunner(
        config,
        process_invoker(config, echo=click.echo),
        notify=slack_mod.task_notifier(config),
    )


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging")
def main(verbose):
    """agman - run AI coding agents through flows in git worktrees and tmux"""
    config = get_config()
    if verbose:
        level = logging.DEBUG
    else:
        level = logging.getLevelNamesMapping().get(config.log_level, logging.WARNING)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


# ── Setup ─────────────────────────────────────────────────────────────────────


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing flows, prompts and commands")
@click.option("--repos-dir", default=None, help="Directory holding your git repositories")
def init(force, repos_dir):
    """Create agman's directories and default files."""
    config = get_config()
    if repos_dir:
        save_config_file(config.base_dir, repos_dir)
        click.echo(f"Repos directory set to {repos_dir}")
    written = config.init_default_files(force=force)
    click.echo(f"Initialized agman at {config.base_dir}")
    for path in written:
        click.echo(f"  wrote {path.relative_to(config.base_dir)}")


# ── Task Creation ─────────────────────────────────────────────────────────────


@main.command("new")
@click.argument("repo")
@click.argument("branch")
@click.argument("description")
@click.option("--flow", default=actions.DEFAULT_FLOW, help="Flow to run")
@click.option("--review-after", is_flag=True, help="Mark the task for review once its flow is done")
@click.option("--no-run", is_flag=True, help="Create the task without starting its flow")
def new_task(repo, branch, description, flow, review_after, no_run):
    """Create a task on BRANCH of REPO (a directory under the repos dir)."""
    config = get_config()
    try:
        task = actions.create_single_repo_task(
            config, repo, branch, description, flow_name=flow, review_after=review_after
        )
    except AgmanError as e:
        _fail(str(e))
    click.echo(f"Created task: {task.task_id}")
    click.echo(f"  Worktree: {task.primary_repo().worktree_path}")
    click.echo(f"  Session: {task.primary_repo().tmux_session}")
    _start_flow(task, no_run)


@main.command("new-multi")
@click.argument("parent_dir", type=click.Path(exists=True, file_okay=False))
@click.argument("branch")
@click.argument("description")
@click.option("--flow", default=actions.DEFAULT_MULTI_FLOW, help="Flow to run")
@click.option("--no-run", is_flag=True, help="Create the task without starting its flow")
def new_multi_task(parent_dir, branch, description, flow, no_run):
    """Create a task spanning the repos under PARENT_DIR."""
    config = get_config()
    try:
        task = actions.create_multi_repo_task(config, parent_dir, branch, description, flow_name=flow)
    except AgmanError as e:
        _fail(str(e))
    click.echo(f"Created multi-repo task: {task.task_id}")
    click.echo(f"  Parent directory: {task.parent_dir}")
    _start_flow(task, no_run)


# ── Inspection ────────────────────────────────────────────────────────────────


@main.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def list_tasks(as_json):
    """List tasks, running first."""
    config = get_config()
    tasks = tasks_mod.list_tasks(config)
    if as_json:
        click.echo(json.dumps([tasks_mod.task_summary(t) for t in tasks], indent=2))
        return
    if not tasks:
        click.echo("No tasks.")
        return
    for t in tasks:
        agent = f" [{t.current_agent}]" if t.current_agent and t.status == TaskStatus.RUNNING else ""
        repos = ", ".join(r.repo_name for r in t.repos) or "-"
        click.echo(
            f"{t.task_id:<40} {t.status.label:<13} {t.flow_name}:{t.flow_step}{agent}  repos: {repos}"
        )


@main.command("show")
@click.argument("task_id")
def show_task(task_id):
    """Show a task's details and plan."""
    config = get_config()
    task = _load(config, task_id)
    click.echo(f"Task: {task.task_id}")
    click.echo(f"  Status: {task.status.label}")
    click.echo(f"  Flow: {task.flow_name} (step {task.flow_step})")
    if task.current_agent:
        click.echo(f"  Agent: {task.current_agent}")
    click.echo(f"  Directory: {task.dir}")
    if task.parent_dir:
        click.echo(f"  Parent directory: {task.parent_dir}")
    for entry in task.repos:
        click.echo(f"  Repo {entry.repo_name}: {entry.worktree_path} ({entry.tmux_session})")
    if task.linked_pr:
        owner = "" if task.linked_pr.owned else f" (by {task.linked_pr.author or 'someone else'})"
        click.echo(f"  PR: #{task.linked_pr.number} {task.linked_pr.url}{owner}")

    plan = taskfile_mod.parse_plan(tasks_mod.read_task_file(task))
    if plan.completed or plan.remaining:
        click.echo(f"\n  Plan: {len(plan.completed)} done, {len(plan.remaining)} remaining")
        for item in plan.remaining:
            click.echo(f"    [ ] {item}")

    queued = tasks_mod.read_feedback_queue(task)
    if queued:
        click.echo(f"\n  Queued feedback: {len(queued)}")

    task_notes = tasks_mod.read_notes(task).strip()
    if task_notes:
        click.echo(f"\n  Notes:\n{task_notes}")


# ── Lifecycle ─────────────────────────────────────────────────────────────────


@main.command("delete")
@click.argument("task_id")
@click.option("--task-only", is_flag=True, help="Keep worktrees, branches and sessions")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def delete_task(task_id, task_only, yes):
    """Delete a task and, unless --task-only, its worktrees, branches and sessions."""
    config = get_config()
    task = _load(config, task_id)
    mode = actions.DeleteMode.TASK_ONLY if task_only else actions.DeleteMode.EVERYTHING
    if not yes:
        what = "the task directory" if task_only else "the task, its worktrees, branches and sessions"
        click.confirm(f"Delete {what} for {task.task_id}?", abort=True)
    failures = actions.delete_task(config, task, mode)
    click.echo(f"Deleted task: {task.task_id}")
    for failure in failures:
        click.echo(f"  Cleanup failed: {failure}", err=True)


@main.command("flow-run")
@click.argument("task_id")
def flow_run(task_id):
    """Run a task's flow in the foreground."""
    config = get_config()
    config.init_default_files()
    task = _load(config, task_id)
    runner = _make_runner(config)

    click.echo(f"Running flow '{task.flow_name}' for task '{task.task_id}'\n")
    try:
        task = runner.run(task)
        # Feedback queued while the flow was running becomes the next continue run.
        while task.status == TaskStatus.DONE:
            feedback = actions.pop_and_apply_feedback(task)
            if feedback is None:
                break
            click.echo("\nContinuing with queued feedback\n")
            task = runner.run(actions.continue_task(config, task))
    except AgmanError as e:
        _fail(str(e))
    click.echo(f"\nFlow finished: {task.status.label}")


@main.command("continue")
@click.argument("task_id")
@click.argument("feedback", required=False)
@click.option("--no-run", is_flag=True, help="Do not start the flow")
def continue_task(task_id, feedback, no_run):
    """Continue a finished or stopped task with FEEDBACK (or the existing FEEDBACK.md)."""
    config = get_config()
    config.init_default_files()
    task = _load(config, task_id)
    try:
        task = actions.continue_task(config, task, feedback)
    except AgmanError as e:
        _fail(str(e))
    click.echo(f"Continuing task: {task.task_id}")
    _start_flow(task, no_run)


@main.command("stop")
@click.argument("task_id")
def stop_task(task_id):
    """Stop a task and interrupt its agent."""
    config = get_config()
    task = actions.stop_task(_load(config, task_id))
    click.echo(f"Stopped task: {task.task_id}")


@main.command("hold")
@click.argument("task_id")
def hold_task(task_id):
    """Put a task on hold after its current agent finishes."""
    config = get_config()
    try:
        task = actions.hold_task(_load(config, task_id))
    except AgmanError as e:
        _fail(str(e))
    click.echo(f"Task on hold: {task.task_id}")


@main.command("resume")
@click.argument("task_id")
@click.option("--no-run", is_flag=True, help="Do not start the flow")
def resume_task(task_id, no_run):
    """Resume a paused or stopped task at its current step."""
    config = get_config()
    try:
        task = actions.resume_task(_load(config, task_id))
    except AgmanError as e:
        _fail(str(e))
    click.echo(f"Resumed task: {task.task_id} at step {task.flow_step}")
    _start_flow(task, no_run)


@main.command("restart")
@click.argument("task_id")
@click.argument("step", type=int)
@click.option("--no-run", is_flag=True, help="Do not start the flow")
def restart_task(task_id, step, no_run):
    """Restart a task's flow from STEP."""
    config = get_config()
    task = _load(config, task_id)
    try:
        task = actions.restart_task(config, task, step)
        flow = load_flow_by_name(config, task.flow_name)
    except AgmanError as e:
        _fail(str(e))
    click.echo(f"Restarting {task.task_id} at step {step} ({flow.step(step).agent})")
    _start_flow(task, no_run)


@main.command("feedback")
@click.argument("task_id")
@click.argument("text")
@click.option("--no-run", is_flag=True, help="Do not start the flow for a task that is not running")
def feedback(task_id, text, no_run):
    """Queue feedback for a running task, or continue an idle task with it."""
    config = get_config()
    task = _load(config, task_id)
    if task.status == TaskStatus.RUNNING:
        count = actions.queue_feedback(task, text)
        click.echo(f"Queued feedback for {task.task_id} ({count} in queue)")
        return
    try:
        task = actions.continue_task(config, task, text)
    except AgmanError as e:
        _fail(str(e))
    click.echo(f"Continuing task: {task.task_id}")
    _start_flow(task, no_run)


@main.command("notes")
@click.argument("task_id")
@click.argument("text", required=False)
def notes(task_id, text):
    """Show a task's notes.md, or replace it with TEXT."""
    config = get_config()
    task = _load(config, task_id)
    if text is None:
        click.echo(tasks_mod.read_notes(task) or "(no notes)")
        return
    tasks_mod.write_notes(task, text.rstrip("\n") + "\n")
    click.echo(f"Updated notes for {task.task_id}")


@main.command("queue")
@click.argument("task_id")
@click.option("--remove", "remove_index", type=int, default=None, help="Drop the queued item at this position")
@click.option("--clear", is_flag=True, help="Drop all queued feedback")
def queue(task_id, remove_index, clear):
    """List or edit the feedback queued for a running task."""
    config = get_config()
    task = _load(config, task_id)
    if clear:
        tasks_mod.clear_feedback_queue(task)
        click.echo(f"Cleared feedback queue for {task.task_id}")
        return
    if remove_index is not None:
        if not 1 <= remove_index <= len(tasks_mod.read_feedback_queue(task)):
            _fail(f"No queued feedback at position {remove_index}")
        tasks_mod.remove_feedback_queue_item(task, remove_index - 1)
    queued = tasks_mod.read_feedback_queue(task)
    if not queued:
        click.echo("No queued feedback.")
        return
    for i, item in enumerate(queued, 1):
        click.echo(f"{i}. {item}")


@main.command("link-pr")
@click.argument("task_id")
@click.argument("number", type=int)
@click.argument("url")
@click.option("--author", default=None, help="PR author, for PRs opened by someone else")
@click.option("--not-owned", is_flag=True, help="The PR belongs to someone else")
def link_pr(task_id, number, url, author, not_owned):
    """Record the pull request that belongs to a task."""
    config = get_config()
    task = _load(config, task_id)
    tasks_mod.set_linked_pr(task, number, url, owned=not not_owned, author=author)
    click.echo(f"Linked PR #{number} to {task.task_id}")


@main.command("attach")
@click.argument("task_id")
def attach(task_id):
    """Attach to a task's tmux session, recreating it if needed."""
    config = get_config()
    task = _load(config, task_id)
    try:
        session = actions.attach_target(task)
        if not worktrees_mod.ensure_session(session, actions.working_dir(task)):
            _fail(f"Could not create tmux session {session}")
        tmux.attach_session(session)
    except AgmanError as e:
        _fail(str(e))


# ── Stored Commands ───────────────────────────────────────────────────────────


@main.command("commands")
def list_commands():
    """List stored commands."""
    config = get_config()
    config.init_default_files()
    cmds = commands_mod.list_commands(config)
    if not cmds:
        click.echo("No stored commands. Run 'agman init' to create the defaults.")
        return
    for cmd in cmds:
        arg = f" (requires --{cmd.requires_arg})" if cmd.requires_arg else ""
        click.echo(f"{cmd.id:<20} {cmd.description}{arg}")


@main.command("run-command")
@click.argument("task_id")
@click.argument("command_id")
@click.option("--branch", default=None, help="Branch argument for commands that need one")
def run_command(task_id, command_id, branch):
    """Run a stored command's flow on a task in the foreground."""
    config = get_config()
    config.init_default_files()
    task = _load(config, task_id)
    try:
        task = commands_mod.run_command(config, task, command_id, _make_runner(config), branch=branch)
    except (AgmanError, ValueError) as e:
        _fail(str(e))
    click.echo(f"\nCommand '{command_id}' finished: {task.status.label}")


# ── MCP Server ────────────────────────────────────────────────────────────────


@main.group("mcp")
def mcp_group():
    """MCP server commands."""
    pass


@mcp_group.command("serve")
def mcp_serve():
    """Start the MCP server (stdio transport)."""
    from agman.mcp.server import mcp

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
