"""Task use cases shared by the CLI and the MCP server.

Single-repo and multi-repo tasks share one model: a single-repo task is
created with its one RepoEntry, a multi-repo task starts with none and a
`parent_dir`. Only the working directory and the attach target differ.
"""

import logging
import shlex
from enum import Enum
from pathlib import Path

from agman.config import Config
from agman.core import tasks, worktrees
from agman.core.flows import load_flow_by_name
from agman.errors import ResourceError, StateError, TmuxError
from agman.integrations import tmux
from agman.store.models import RepoEntry, Task, TaskStatus

logger = logging.getLogger(__name__)

DEFAULT_FLOW = "new"
DEFAULT_MULTI_FLOW = "new-multi"
CONTINUE_FLOW = "continue"
AGMAN_WINDOW = "agman"


class DeleteMode(str, Enum):
    EVERYTHING = "everything"
    TASK_ONLY = "task_only"


# ── Create ───────────────────────────────────────────────────────────────────


def _prepare(config: Config, name: str, branch: str, flow_name: str):
    config.init_default_files()
    load_flow_by_name(config, flow_name)
    if config.task_dir(name, branch).exists():
        raise StateError(f"Task '{Config.task_id(name, branch)}' already exists")


def create_single_repo_task(
    config: Config,
    repo_name: str,
    branch: str,
    description: str,
    flow_name: str = DEFAULT_FLOW,
    review_after: bool = False,
) -> Task:
    """Check out the branch, record the task, then open its tmux session.

    A failed checkout aborts before anything is written; a failed session
    does not.
    """
    _prepare(config, repo_name, branch, flow_name)

    wt_path = worktrees.ensure_checkout(config, repo_name, branch)
    session = Config.tmux_session_name(repo_name, branch)
    task = tasks.create_task(
        config,
        repo_name,
        branch,
        description,
        flow_name,
        repos=[RepoEntry(repo_name=repo_name, worktree_path=wt_path, tmux_session=session)],
        review_after=review_after,
    )
    worktrees.ensure_session(session, wt_path)
    return task


def create_multi_repo_task(
    config: Config,
    parent_dir: str | Path,
    branch: str,
    description: str,
    flow_name: str = DEFAULT_MULTI_FLOW,
) -> Task:
    """Create a task over every repo under `parent_dir`; repos are chosen later by the flow."""
    parent = Path(parent_dir).expanduser().resolve()
    if not parent.is_dir():
        raise ResourceError(f"Parent directory {parent} does not exist")
    name = parent.name
    _prepare(config, name, branch, flow_name)

    task = tasks.create_task(config, name, branch, description, flow_name, repos=[], parent_dir=parent)
    worktrees.ensure_session(Config.tmux_session_name(name, branch), parent)
    return task


# ── Delete ───────────────────────────────────────────────────────────────────


def delete_task(config: Config, task: Task, mode: DeleteMode) -> list[str]:
    """Delete the task directory, and with EVERYTHING its worktrees, branches and sessions.

    Returns the teardown failures; the task directory is removed regardless.
    """
    logger.info("Deleting task %s (%s)", task.task_id, mode.value)
    failures = []
    if mode == DeleteMode.EVERYTHING:
        failures = worktrees.teardown_all(config, task)
    tasks.delete_task_dir(task)
    return failures


# ── Status changes ───────────────────────────────────────────────────────────


def stop_task(task: Task) -> Task:
    """Mark the task stopped and interrupt a flow run in its agman window."""
    if task.status == TaskStatus.STOPPED:
        return task
    task.current_agent = None
    tasks.update_status(task, TaskStatus.STOPPED)
    session = _session_or_none(task)
    if session and tmux.session_exists(session):
        try:
            tmux.send_ctrl_c(session, AGMAN_WINDOW)
        except TmuxError as e:
            logger.warning("Could not interrupt %s: %s", session, e)
    return task


def hold_task(task: Task) -> Task:
    if task.status.is_terminal:
        raise StateError(f"Task '{task.task_id}' is {task.status.label} and cannot be put on hold")
    return tasks.update_status(task, TaskStatus.ON_HOLD)


def resume_task(task: Task) -> Task:
    """Set a paused or stopped task back to running at its current step."""
    resumable = (TaskStatus.INPUT_NEEDED, TaskStatus.ON_HOLD, TaskStatus.STOPPED)
    if task.status not in resumable:
        raise StateError(
            f"Task '{task.task_id}' is {task.status.label}; only input needed, "
            "on hold or stopped tasks can be resumed"
        )
    return tasks.update_status(task, TaskStatus.RUNNING)


def restart_task(config: Config, task: Task, step: int) -> Task:
    """Run the task's flow again from `step`."""
    flow = load_flow_by_name(config, task.flow_name)
    if not 0 <= step < len(flow):
        raise StateError(
            f"Step {step} is out of range for flow '{flow.name}' (0-{len(flow) - 1})"
        )
    task.flow_step = step
    task.current_agent = None
    return tasks.update_status(task, TaskStatus.RUNNING)


def continue_task(config: Config, task: Task, feedback: str | None = None) -> Task:
    """Switch the task to the continue flow with new feedback in FEEDBACK.md."""
    if task.status == TaskStatus.RUNNING:
        raise StateError(f"Task '{task.task_id}' is running; queue the feedback instead")
    if feedback:
        tasks.write_feedback(task, feedback)
        tasks.append_feedback_to_log(task, feedback)
    if not tasks.read_feedback(task).strip():
        raise StateError(f"No feedback given for task '{task.task_id}'")

    load_flow_by_name(config, CONTINUE_FLOW)
    task.flow_name = CONTINUE_FLOW
    task.flow_step = 0
    task.current_agent = None
    return tasks.update_status(task, TaskStatus.RUNNING)


# ── Feedback ─────────────────────────────────────────────────────────────────


def queue_feedback(task: Task, feedback: str) -> int:
    """Queue feedback for a task that is still running. Returns the queue length."""
    tasks.append_feedback_to_log(task, feedback)
    return tasks.queue_feedback(task, feedback)


def pop_and_apply_feedback(task: Task) -> str | None:
    """Move the oldest queued feedback into FEEDBACK.md."""
    feedback = tasks.pop_feedback_queue(task)
    if feedback is not None:
        tasks.write_feedback(task, feedback)
    return feedback


# ── Where the task lives ─────────────────────────────────────────────────────


def working_dir(task: Task) -> Path:
    """Multi-repo tasks run in the parent directory, others in their worktree."""
    if task.is_multi_repo():
        return task.parent_dir
    return task.primary_repo().worktree_path


def attach_target(task: Task) -> str:
    """The tmux session a user attaches to for this task."""
    if task.is_multi_repo():
        return Config.tmux_session_name(task.name, task.branch_name)
    return task.primary_repo().tmux_session


def _session_or_none(task: Task) -> str | None:
    try:
        return attach_target(task)
    except StateError:
        return None


def dispatch_flow_run(task: Task) -> bool:
    """Start `agman flow-run` in the task's agman window. False if there is no session."""
    session = _session_or_none(task)
    if not session or not tmux.session_exists(session):
        return False
    try:
        tmux.send_keys(session, AGMAN_WINDOW, f"agman flow-run {shlex.quote(task.task_id)}")
    except TmuxError as e:
        logger.warning("Could not dispatch flow run to %s: %s", session, e)
        return False
    return True
