"""Git subprocess wrappers used to provision and inspect task worktrees."""

import subprocess
from pathlib import Path

from agman.errors import GitError


def run_git(args: list[str], cwd: str | Path | None = None) -> str:
    """Run a git command and return stdout. Raises GitError on failure."""
    try:
        result = subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True, check=True)
    except subprocess.CalledProcessError as e:
        raise GitError(f"git {' '.join(args)} failed: {e.stderr.strip()}") from e
    except OSError as e:
        raise GitError(f"git {' '.join(args)} could not run in {cwd}: {e}") from e
    return result.stdout.strip()


def is_git_repo(path: str | Path) -> bool:
    if not Path(path).is_dir():
        return False
    try:
        return run_git(["rev-parse", "--is-inside-work-tree"], cwd=path) == "true"
    except GitError:
        return False


# ── Worktrees ────────────────────────────────────────────────────────────────


def worktree_add(repo_path: str | Path, worktree_path: str | Path, branch: str, new_branch: bool):
    """Check out `branch` at `worktree_path`, creating the branch from HEAD if `new_branch`."""
    if new_branch:
        run_git(["worktree", "add", "-b", branch, str(worktree_path)], cwd=repo_path)
    else:
        run_git(["worktree", "add", str(worktree_path), branch], cwd=repo_path)


def worktree_paths(repo_path: str | Path) -> list[Path]:
    """Paths of every worktree registered with the repository, main checkout first."""
    output = run_git(["worktree", "list", "--porcelain"], cwd=repo_path)
    prefix = "worktree "
    return [Path(line[len(prefix):]) for line in output.splitlines() if line.startswith(prefix)]


def worktree_remove(repo_path: str | Path, worktree_path: str | Path):
    """Remove a worktree even if it has local changes."""
    run_git(["worktree", "remove", "--force", str(worktree_path)], cwd=repo_path)


def worktree_prune(repo_path: str | Path):
    """Drop administrative entries for worktrees whose directories are gone."""
    run_git(["worktree", "prune"], cwd=repo_path)


def get_common_dir(cwd: str | Path) -> Path:
    """The git directory shared by all worktrees of a repository."""
    common = Path(run_git(["rev-parse", "--git-common-dir"], cwd=cwd))
    return common if common.is_absolute() else Path(cwd) / common


# ── Branches ─────────────────────────────────────────────────────────────────


def branch_exists(repo_path: str | Path, branch: str) -> bool:
    try:
        run_git(["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"], cwd=repo_path)
    except GitError:
        return False
    return True


def delete_branch(repo_path: str | Path, branch: str):
    """Force-delete a local branch; task branches are often unmerged."""
    run_git(["branch", "-D", branch], cwd=repo_path)


# ── Context for prompts ──────────────────────────────────────────────────────


def get_diff(cwd: str | Path) -> str:
    """Uncommitted changes against HEAD."""
    return run_git(["diff", "HEAD"], cwd=cwd)


def get_log_summary(cwd: str | Path, limit: int = 20) -> str:
    """One-line summary of the most recent commits."""
    return run_git(["log", "--oneline", f"-{limit}"], cwd=cwd)
