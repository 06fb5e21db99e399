"""Stored commands: named one-off flows (create a PR, rebase, ...) run against a task."""

import logging
from dataclasses import dataclass
from pathlib import Path

from agman.config import Config
from agman.core import tasks
from agman.core.flows import Flow, build_flow, parse_document, read_yaml
from agman.errors import ParseError, StateError
from agman.store.models import Task, TaskStatus

logger = logging.getLogger(__name__)

REBASE_TARGET_FILE = ".rebase-target"


@dataclass
class StoredCommand:
    id: str
    name: str
    description: str
    flow: Flow
    path: Path
    requires_arg: str | None = None


def load_command(path: Path) -> StoredCommand:
    document = parse_document(read_yaml(path, kind="Command"), source=str(path))
    return StoredCommand(
        id=document.id or path.stem,
        name=document.name,
        description=document.description or "",
        flow=build_flow(document),
        path=path,
        requires_arg=document.requires_arg,
    )


def list_commands(config: Config) -> list[StoredCommand]:
    """All loadable commands, sorted by name. Broken files are logged and skipped."""
    if not config.commands_dir.is_dir():
        return []
    commands = []
    for path in sorted(config.commands_dir.glob("*.yaml")):
        try:
            commands.append(load_command(path))
        except ParseError as e:
            logger.warning("Skipping command %s: %s", path.name, e)
    commands.sort(key=lambda c: c.name)
    return commands


def get_command(config: Config, command_id: str) -> StoredCommand:
    path = config.command_path(command_id)
    if not path.exists():
        raise ValueError(f"Command not found: {command_id}")
    return load_command(path)


def run_command(config: Config, task: Task, command_id: str, runner, branch: str | None = None) -> Task:
    """Run a stored command's flow on the task, then restore the task's own flow position.

    `runner` is a FlowRunner. A command with `requires_arg: branch` needs
    `branch`, which is handed to its agents through the task directory.
    """
    command = get_command(config, command_id)
    if command.requires_arg == "branch":
        if not branch:
            raise StateError(f"Command '{command_id}' requires a branch argument")
        (task.dir / REBASE_TARGET_FILE).write_text(branch + "\n")

    original_flow, original_step = task.flow_name, task.flow_step
    logger.info("Running command %s on %s", command.id, task.task_id)

    task.flow_name = command.id
    task.flow_step = 0
    task.current_agent = None
    tasks.update_status(task, TaskStatus.RUNNING)
    try:
        task = runner.run(task, flow=command.flow)
    finally:
        task = tasks.reload_task(task)
        task.flow_name = original_flow
        task.flow_step = original_step
        tasks.save_task(task)
    return task
