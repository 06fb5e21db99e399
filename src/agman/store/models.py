"""Data models for agman tasks."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from agman.config import Config
from agman.errors import StateError


class TaskStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    INPUT_NEEDED = "input_needed"
    ON_HOLD = "on_hold"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.DONE, TaskStatus.FAILED)

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


@dataclass
class RepoEntry:
    """One provisioned repository: a worktree plus the tmux session attached to it."""

    repo_name: str
    worktree_path: Path
    tmux_session: str


@dataclass
class LinkedPr:
    number: int
    url: str
    owned: bool = True
    author: str | None = None


@dataclass
class Task:
    name: str
    branch_name: str
    flow_name: str
    dir: Path
    status: TaskStatus = TaskStatus.RUNNING
    current_agent: str | None = None
    flow_step: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    review_after: bool = False
    linked_pr: LinkedPr | None = None
    last_review_count: int | None = None
    review_addressed: bool = False
    seen: bool = False
    repos: list[RepoEntry] = field(default_factory=list)
    parent_dir: Path | None = None

    @property
    def task_id(self) -> str:
        return Config.task_id(self.name, self.branch_name)

    def is_multi_repo(self) -> bool:
        # repos is empty or partial while a multi-repo task is being set up
        return self.parent_dir is not None

    def has_repos(self) -> bool:
        return bool(self.repos)

    def primary_repo(self) -> RepoEntry:
        if not self.repos:
            raise StateError(f"Task '{self.task_id}' has no repositories set up yet")
        return self.repos[0]

    def find_repo(self, repo_name: str) -> RepoEntry | None:
        for entry in self.repos:
            if entry.repo_name == repo_name:
                return entry
        return None
