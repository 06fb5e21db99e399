"""Configuration loading from environment variables and config.toml."""

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


def sanitize_branch(branch: str) -> str:
    """Replace `/` so task directories, worktrees and tmux targets stay flat."""
    return branch.replace("/", "-")


@dataclass
class Config:
    base_dir: Path = field(default_factory=lambda: Path.home() / ".agman")
    repos_dir: Path = field(default_factory=lambda: Path.home() / "repos")
    agent_command: str = "claude"
    log_level: str = "WARNING"
    slack_bot_token: str | None = None
    slack_channel: str | None = None

    @classmethod
    def from_env(cls) -> "Config":
        config = cls()

        if home := os.environ.get("AGMAN_HOME"):
            config.base_dir = Path(home)

        file_values = load_config_file(config.base_dir)
        if repos := file_values.get("repos_dir"):
            config.repos_dir = Path(repos)

        if repos := os.environ.get("AGMAN_REPOS_DIR"):
            config.repos_dir = Path(repos)

        if command := os.environ.get("AGMAN_AGENT_COMMAND"):
            config.agent_command = command

        if level := os.environ.get("AGMAN_LOG_LEVEL"):
            config.log_level = level.upper()

        config.slack_bot_token = os.environ.get("SLACK_BOT_TOKEN")
        config.slack_channel = os.environ.get("AGMAN_SLACK_CHANNEL")

        return config

    # ── Directories ──────────────────────────────────────────────────────

    @property
    def tasks_dir(self) -> Path:
        return self.base_dir / "tasks"

    @property
    def flows_dir(self) -> Path:
        return self.base_dir / "flows"

    @property
    def prompts_dir(self) -> Path:
        return self.base_dir / "prompts"

    @property
    def commands_dir(self) -> Path:
        return self.base_dir / "commands"

    def ensure_dirs(self):
        for directory in (self.tasks_dir, self.flows_dir, self.prompts_dir, self.commands_dir):
            directory.mkdir(parents=True, exist_ok=True)

    # ── Naming ───────────────────────────────────────────────────────────

    @staticmethod
    def task_id(name: str, branch_name: str) -> str:
        return f"{name}--{sanitize_branch(branch_name)}"

    @staticmethod
    def parse_task_id(task_id: str) -> tuple[str, str] | None:
        name, sep, branch = task_id.partition("--")
        if not sep or not name or not branch:
            return None
        return name, branch

    @staticmethod
    def tmux_session_name(repo_name: str, branch_name: str) -> str:
        return f"({repo_name})__{sanitize_branch(branch_name)}"

    # ── Paths ────────────────────────────────────────────────────────────

    def task_dir(self, name: str, branch_name: str) -> Path:
        return self.tasks_dir / self.task_id(name, branch_name)

    def repo_path(self, repo_name: str) -> Path:
        return self.repos_dir / repo_name

    def worktree_base(self, repo_name: str) -> Path:
        return self.repos_dir / f"{repo_name}-wt"

    def worktree_path(self, repo_name: str, branch_name: str) -> Path:
        return self.worktree_base(repo_name) / sanitize_branch(branch_name)

    def flow_path(self, flow_name: str) -> Path:
        return self.flows_dir / f"{flow_name}.yaml"

    def prompt_path(self, agent_name: str) -> Path:
        return self.prompts_dir / f"{agent_name}.md"

    def command_path(self, command_id: str) -> Path:
        return self.commands_dir / f"{command_id}.yaml"

    def init_default_files(self, force: bool = False) -> list[Path]:
        """Write the default flows, prompts and commands. Returns the files written."""
        from agman.core import defaults

        self.ensure_dirs()
        targets = (
            [(self.flow_path(n), body) for n, body in defaults.FLOWS.items()]
            + [(self.prompt_path(n), body) for n, body in defaults.PROMPTS.items()]
            + [(self.command_path(n), body) for n, body in defaults.COMMANDS.items()]
        )
        written = []
        for path, body in targets:
            if force or not path.exists():
                path.write_text(body)
                written.append(path)
        return written


def load_config_file(base_dir: Path) -> dict:
    """Read `<base_dir>/config.toml`, returning an empty dict if missing or unparseable."""
    path = base_dir / "config.toml"
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except FileNotFoundError:
        return {}
    except (tomllib.TOMLDecodeError, OSError) as e:
        logger.warning("Failed to parse %s, using defaults: %s", path, e)
        return {}


def save_config_file(base_dir: Path, repos_dir: str | Path):
    """Persist `repos_dir` to `<base_dir>/config.toml`."""
    base_dir.mkdir(parents=True, exist_ok=True)
    escaped = str(repos_dir).replace("\\", "\\\\").replace('"', '\\"')
    (base_dir / "config.toml").write_text(f'repos_dir = "{escaped}"\n')


def get_config() -> Config:
    return Config.from_env()
