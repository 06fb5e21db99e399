"""Per-repo resources for a task: a git worktree plus a tmux session.

Creation is idempotent so a setup interrupted by a crash can simply be run
again. Checkout failures are fatal; session failures only get logged.
Teardown is best-effort and reports what it could not clean up.
"""

import logging
from pathlib import Path

from agman.config import Config, sanitize_branch
from agman.core import taskfile, tasks
from agman.errors import GitError, ResourceError, StateError, TmuxError
from agman.integrations import git, tmux
from agman.store.models import RepoEntry, Task

logger = logging.getLogger(__name__)

EXCLUDED_FILES = ["REVIEW.md"]


def repo_source(config: Config, task: Task, repo_name: str) -> Path:
    """Where the main checkout of `repo_name` lives for this task."""
    if task.parent_dir is not None:
        return task.parent_dir / repo_name
    return config.repo_path(repo_name)


def _worktree_path(config: Config, repo_name: str, branch: str, repo_path: Path) -> Path:
    if repo_path == config.repo_path(repo_name):
        return config.worktree_path(repo_name, branch)
    return repo_path.parent / f"{repo_name}-wt" / sanitize_branch(branch)


def _find_registered(repo_path: Path, wt_path: Path) -> bool:
    target = wt_path.resolve()
    return any(p.resolve() == target for p in git.worktree_paths(repo_path))


def _exclude_files(wt_path: Path):
    """Keep agman's scratch files out of `git status` for the worktree."""
    try:
        exclude = git.get_common_dir(wt_path) / "info" / "exclude"
        existing = exclude.read_text().splitlines() if exclude.exists() else []
        missing = [name for name in EXCLUDED_FILES if name not in existing]
        if not missing:
            return
        exclude.parent.mkdir(parents=True, exist_ok=True)
        with exclude.open("a") as f:
            if existing and existing[-1] != "":
                f.write("\n")
            f.write("\n".join(missing) + "\n")
    except (GitError, OSError) as e:
        logger.warning("Could not update git excludes for %s: %s", wt_path, e)


# ── Checkouts and sessions ───────────────────────────────────────────────────


def ensure_checkout(
    config: Config, repo_name: str, branch: str, repo_path: Path | None = None
) -> Path:
    """Return the worktree for repo+branch, creating it (and the branch) if needed.

    Raises GitError if the repository is unusable or git refuses the worktree.
    """
    repo_path = Path(repo_path) if repo_path is not None else config.repo_path(repo_name)
    if not git.is_git_repo(repo_path):
        raise GitError(f"{repo_path} is not a git repository")

    wt_path = _worktree_path(config, repo_name, branch, repo_path)
    if _find_registered(repo_path, wt_path):
        logger.debug("Worktree %s already exists", wt_path)
        return wt_path

    wt_path.parent.mkdir(parents=True, exist_ok=True)
    new_branch = not git.branch_exists(repo_path, branch)
    logger.info(
        "Creating worktree %s (%s branch %s)",
        wt_path, "new" if new_branch else "existing", branch,
    )
    git.worktree_add(repo_path, wt_path, branch, new_branch)
    _exclude_files(wt_path)
    return wt_path


def ensure_session(name: str, working_dir: Path) -> bool:
    """Create the tmux session unless it exists. Never raises."""
    if tmux.session_exists(name):
        return True
    try:
        tmux.create_session(name, working_dir)
    except TmuxError as e:
        logger.warning("Could not create tmux session %s: %s", name, e)
        return False
    logger.info("Created tmux session %s in %s", name, working_dir)
    return True


# ── Teardown ─────────────────────────────────────────────────────────────────


def teardown(config: Config, entry: RepoEntry, branch: str, repo_path: Path | None = None) -> list[str]:
    """Kill the session, remove the worktree and delete the branch.

    Every step is attempted even when an earlier one fails. Returns a list of
    failure messages, empty when everything was cleaned up.
    """
    repo_path = Path(repo_path) if repo_path is not None else config.repo_path(entry.repo_name)
    failures = []

    try:
        tmux.kill_session(entry.tmux_session)
    except TmuxError as e:
        failures.append(f"{entry.repo_name}: {e}")

    if entry.worktree_path.exists():
        try:
            git.worktree_remove(repo_path, entry.worktree_path)
        except GitError as e:
            failures.append(f"{entry.repo_name}: {e}")
    try:
        git.worktree_prune(repo_path)
    except GitError as e:
        failures.append(f"{entry.repo_name}: {e}")

    if git.branch_exists(repo_path, branch):
        try:
            git.delete_branch(repo_path, branch)
        except GitError as e:
            failures.append(f"{entry.repo_name}: {e}")

    for failure in failures:
        logger.warning("Teardown: %s", failure)
    return failures


def teardown_all(config: Config, task: Task) -> list[str]:
    """Tear down every repo of the task, plus the parent session of a multi-repo task."""
    failures = []
    for entry in task.repos:
        failures += teardown(
            config, entry, task.branch_name, repo_path=repo_source(config, task, entry.repo_name)
        )
    if task.is_multi_repo():
        try:
            tmux.kill_session(Config.tmux_session_name(task.name, task.branch_name))
        except TmuxError as e:
            logger.warning("Teardown: parent session: %s", e)
            failures.append(f"parent session: {e}")
    return failures


# ── Multi-repo setup hook ────────────────────────────────────────────────────


def setup_repos(config: Config, task: Task) -> Task:
    """Provision every repo listed under `# Repos` in TASK.md.

    Entries are appended and saved one at a time, and repos already recorded
    are skipped, so running this again after a crash picks up where it left off.
    """
    if task.parent_dir is None:
        raise StateError(f"Task '{task.task_id}' has no parent directory to set up repos from")

    names = taskfile.parse_required_repos(tasks.read_task_file(task))
    logger.info("Setting up %d repos for %s: %s", len(names), task.task_id, ", ".join(names))

    for name in names:
        if task.find_repo(name):
            logger.debug("Repo %s already set up for %s", name, task.task_id)
            continue
        repo_path = task.parent_dir / name
        if not git.is_git_repo(repo_path):
            raise ResourceError(f"Repository '{name}' not found under {task.parent_dir}")

        wt_path = ensure_checkout(config, name, task.branch_name, repo_path=repo_path)
        session = Config.tmux_session_name(name, task.branch_name)
        ensure_session(session, wt_path)
        tasks.add_repo(task, RepoEntry(repo_name=name, worktree_path=wt_path, tmux_session=session))

    return task
