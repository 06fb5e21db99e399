"""Assemble the prompt text handed to an agent process."""

import logging
from collections.abc import Callable

from agman.core import tasks
from agman.errors import GitError
from agman.integrations import git
from agman.store.models import RepoEntry, Task

logger = logging.getLogger(__name__)

MAX_DIFF_CHARS = 10000
LOG_LIMIT = 20


def collect_git_context(entry: RepoEntry) -> str:
    """Uncommitted diff and recent commits of one worktree."""
    try:
        diff = git.get_diff(entry.worktree_path)
    except GitError as e:
        logger.debug("No diff for %s: %s", entry.repo_name, e)
        diff = ""
    try:
        log = git.get_log_summary(entry.worktree_path, limit=LOG_LIMIT)
    except GitError as e:
        logger.debug("No log for %s: %s", entry.repo_name, e)
        log = ""

    parts = []
    if diff:
        if len(diff) > MAX_DIFF_CHARS:
            diff = diff[:MAX_DIFF_CHARS] + "\n... (truncated)"
        parts.append(f"### Current Diff\n```diff\n{diff}\n```")
    if log:
        parts.append(f"### Recent Commits\n```\n{log}\n```")
    return "\n\n".join(parts) if parts else "(no changes)"


def aggregate_git_context(
    repos: list[RepoEntry], collect: Callable[[RepoEntry], str] = collect_git_context
) -> str:
    """Run `collect` for each repo in order, each section headed by the repo name."""
    return "\n\n".join(f"## {entry.repo_name}\n{collect(entry)}" for entry in repos)


def build_prompt(
    task: Task,
    template: str,
    collect: Callable[[RepoEntry], str] = collect_git_context,
) -> str:
    """Agent template followed by the task's current context.

    TASK.md and FEEDBACK.md are read fresh every time; agents edit them
    between steps.
    """
    parts = [template.rstrip("\n"), "---"]
    parts.append(
        "# Task Directory\n"
        f"{task.dir}\n"
        f"Read and update the task file at {task.dir / tasks.TASK_FILE}"
    )
    parts.append(f"# Task\n{tasks.read_task_file(task).strip()}")

    if task.is_multi_repo():
        if task.has_repos():
            lines = "\n".join(f"- {r.repo_name}: {r.worktree_path}" for r in task.repos)
            parts.append(f"# Repositories\n{lines}")
        else:
            parts.append(
                "# Repositories\n"
                f"Repositories have not been set up yet. Parent directory: {task.parent_dir}"
            )

    feedback = tasks.read_feedback(task).strip()
    if feedback:
        parts.append(f"# Follow-up Feedback\n{feedback}")

    if task.has_repos() and (task.is_multi_repo() or feedback):
        context = aggregate_git_context(task.repos, collect)
        if context:
            parts.append(f"# Git Context\n{context}")

    return "\n\n".join(parts) + "\n"
