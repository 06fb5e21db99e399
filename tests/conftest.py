"""Shared fixtures: temp agman homes, real git repos and an in-memory tmux."""

import os
import subprocess
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from agman.config import Config
from agman.core.agents import AgentResult

GIT_ENV = {
    **os.environ,
    "GIT_AUTHOR_NAME": "Test",
    "GIT_AUTHOR_EMAIL": "test@test.com",
    "GIT_COMMITTER_NAME": "Test",
    "GIT_COMMITTER_EMAIL": "test@test.com",
}


def make_git_repo(path: Path) -> Path:
    """Create a git repo with one commit on main."""
    path.mkdir(parents=True, exist_ok=True)
    subprocess.run(["git", "init"], cwd=path, capture_output=True, check=True)
    subprocess.run(["git", "checkout", "-b", "main"], cwd=path, capture_output=True, check=True)
    (path / "README.md").write_text(f"# {path.name}")
    subprocess.run(["git", "add", "."], cwd=path, capture_output=True, check=True)
    subprocess.run(
        ["git", "commit", "-m", "init"], cwd=path, capture_output=True, check=True, env=GIT_ENV
    )
    return path


def git_branches(repo: Path) -> list[str]:
    out = subprocess.run(
        ["git", "branch", "--format=%(refname:short)"],
        cwd=repo, capture_output=True, text=True, check=True,
    ).stdout
    return out.split()


class FakeTmux:
    """Records tmux calls and keeps a set of live sessions."""

    def __init__(self):
        self.sessions: dict[str, Path] = {}
        self.created: list[str] = []
        self.killed: list[str] = []
        self.keys: list[tuple[str, str, str]] = []

    def session_exists(self, name):
        return name in self.sessions

    def create_session(self, name, working_dir, windows=None):
        self.sessions[name] = Path(working_dir)
        self.created.append(name)

    def kill_session(self, name):
        if self.sessions.pop(name, None) is not None:
            self.killed.append(name)

    def send_keys(self, session, window, keys):
        self.keys.append((session, window, keys))

    def send_ctrl_c(self, session, window):
        self.keys.append((session, window, "C-c"))


class ScriptedAgent:
    """Agent invoker returning canned results in call order.

    Each response is an output string, an AgentResult, or a callable taking
    the task and returning either.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: list[str] = []
        self.prompts: list[str] = []

    def __call__(self, prompt, cwd, task):
        self.calls.append(task.current_agent)
        self.prompts.append(prompt)
        if not self.responses:
            raise AssertionError(f"Unexpected agent call: {task.current_agent}")
        response = self.responses.pop(0)
        if callable(response):
            response = response(task)
        if isinstance(response, AgentResult):
            return response
        return AgentResult(output=response, exit_code=0)


@pytest.fixture
def workspace():
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp)


@pytest.fixture
def config(workspace):
    """A Config rooted in a temp dir, with default flows and prompts written."""
    repos_dir = workspace / "repos"
    repos_dir.mkdir()
    cfg = Config(base_dir=workspace / "agman", repos_dir=repos_dir)
    cfg.init_default_files()
    return cfg


@pytest.fixture
def git_repo(config):
    """A git repo named `app` inside the repos dir."""
    return make_git_repo(config.repos_dir / "app")


@pytest.fixture
def fake_tmux():
    fake = FakeTmux()
    with patch.multiple(
        "agman.integrations.tmux",
        session_exists=fake.session_exists,
        create_session=fake.create_session,
        kill_session=fake.kill_session,
        send_keys=fake.send_keys,
        send_ctrl_c=fake.send_ctrl_c,
    ):
        yield fake
