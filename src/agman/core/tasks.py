"""Task store: one directory per task holding meta.json, TASK.md and logs."""

import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path

from agman.config import Config, sanitize_branch
from agman.core import taskfile
from agman.errors import StateError, TaskNotFound
from agman.store.engine import read_json, write_json_atomic, write_text_atomic
from agman.store.models import LinkedPr, RepoEntry, Task, TaskStatus

logger = logging.getLogger(__name__)

META_FILE = "meta.json"
TASK_FILE = "TASK.md"
NOTES_FILE = "notes.md"
AGENT_LOG = "agent.log"
FEEDBACK_FILE = "FEEDBACK.md"
QUEUE_FILE = "feedback_queue.json"

_STATUS_ORDER = {
    TaskStatus.RUNNING: 0,
    TaskStatus.INPUT_NEEDED: 1,
    TaskStatus.STOPPED: 2,
    TaskStatus.ON_HOLD: 3,
    TaskStatus.FAILED: 4,
    TaskStatus.DONE: 5,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── Create / Load / Save ─────────────────────────────────────────────────────


def create_task(
    config: Config,
    name: str,
    branch_name: str,
    description: str,
    flow_name: str,
    repos: list[RepoEntry] | None = None,
    parent_dir: Path | None = None,
    review_after: bool = False,
) -> Task:
    """Create the task directory, meta.json, TASK.md and empty notes/log files."""
    task_dir = config.task_dir(name, branch_name)
    if task_dir.exists():
        raise StateError(f"Task '{Config.task_id(name, branch_name)}' already exists")

    logger.info("Creating task %s (flow=%s)", Config.task_id(name, branch_name), flow_name)
    task_dir.mkdir(parents=True)

    now = _now()
    task = Task(
        name=name,
        branch_name=branch_name,
        flow_name=flow_name,
        dir=task_dir,
        created_at=now,
        updated_at=now,
        review_after=review_after,
        repos=list(repos or []),
        parent_dir=Path(parent_dir) if parent_dir is not None else None,
    )
    save_task(task)
    for filename in (NOTES_FILE, AGENT_LOG):
        (task_dir / filename).touch()
    write_task_file(task, taskfile.render_task_file(description))
    return task


def load_task(config: Config, task_id: str) -> Task:
    """Load a task by `name--branch` id, or by bare branch name if unambiguous."""
    if Config.parse_task_id(task_id):
        task_dir = config.tasks_dir / task_id
        if not task_dir.is_dir():
            raise TaskNotFound(f"Task '{task_id}' does not exist")
        return _load_from_dir(task_dir)

    matching = [
        t for t in list_tasks(config)
        if task_id in (t.branch_name, sanitize_branch(t.branch_name))
    ]
    if not matching:
        raise TaskNotFound(f"Task '{task_id}' not found")
    if len(matching) > 1:
        raise TaskNotFound(
            f"Ambiguous task '{task_id}': matches {', '.join(t.task_id for t in matching)}. "
            "Use the name--branch form."
        )
    return matching[0]


def reload_task(task: Task) -> Task:
    """Re-read meta.json, picking up changes written by other processes."""
    return _load_from_dir(task.dir)


def save_task(task: Task):
    write_json_atomic(task.dir / META_FILE, _task_to_dict(task))


def list_tasks(config: Config) -> list[Task]:
    """All readable tasks, running first, then by most recently updated."""
    if not config.tasks_dir.is_dir():
        return []

    tasks = []
    for entry in sorted(config.tasks_dir.iterdir()):
        if not entry.is_dir() or not Config.parse_task_id(entry.name):
            continue
        try:
            tasks.append(_load_from_dir(entry))
        except StateError as e:
            logger.warning("Skipping unreadable task %s: %s", entry.name, e)

    oldest = datetime.min.replace(tzinfo=timezone.utc)
    tasks.sort(key=lambda t: (t.updated_at or oldest), reverse=True)
    tasks.sort(key=lambda t: _STATUS_ORDER[t.status])
    return tasks


def delete_task_dir(task: Task):
    logger.info("Deleting task directory %s", task.dir)
    if task.dir.exists():
        shutil.rmtree(task.dir)


# ── Mutators ─────────────────────────────────────────────────────────────────


def update_status(task: Task, status: TaskStatus) -> Task:
    logger.debug("Task %s status %s -> %s", task.task_id, task.status.value, status.value)
    task.status = status
    if status == TaskStatus.STOPPED:
        task.seen = False
    task.updated_at = _now()
    save_task(task)
    return task


def update_agent(task: Task, agent: str | None) -> Task:
    task.current_agent = agent
    task.updated_at = _now()
    save_task(task)
    return task


def set_flow_step(task: Task, step: int) -> Task:
    task.flow_step = step
    task.updated_at = _now()
    save_task(task)
    return task


def set_linked_pr(
    task: Task, number: int, url: str, owned: bool = True, author: str | None = None
) -> Task:
    task.linked_pr = LinkedPr(number=number, url=url, owned=owned, author=author)
    task.updated_at = _now()
    save_task(task)
    return task


def add_repo(task: Task, entry: RepoEntry) -> Task:
    task.repos.append(entry)
    task.updated_at = _now()
    save_task(task)
    return task


# ── Task directory files ─────────────────────────────────────────────────────


def read_task_file(task: Task) -> str:
    path = task.dir / TASK_FILE
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return ""


def write_task_file(task: Task, content: str):
    write_text_atomic(task.dir / TASK_FILE, content)


def read_notes(task: Task) -> str:
    path = task.dir / NOTES_FILE
    return path.read_text(encoding="utf-8") if path.exists() else ""


def write_notes(task: Task, notes: str):
    write_text_atomic(task.dir / NOTES_FILE, notes)


def read_agent_log(task: Task) -> str:
    path = task.dir / AGENT_LOG
    return path.read_text(encoding="utf-8") if path.exists() else ""


def append_agent_log(task: Task, line: str):
    with (task.dir / AGENT_LOG).open("a", encoding="utf-8") as f:
        f.write(line.rstrip("\n") + "\n")


def append_feedback_to_log(task: Task, feedback: str):
    stamp = _now().strftime("%Y-%m-%d %H:%M:%S UTC")
    append_agent_log(
        task, f"\n--- User feedback at {stamp} ---\n{feedback}\n--- End user feedback ---"
    )


def write_feedback(task: Task, feedback: str):
    (task.dir / FEEDBACK_FILE).write_text(feedback, encoding="utf-8")


def read_feedback(task: Task) -> str:
    path = task.dir / FEEDBACK_FILE
    return path.read_text(encoding="utf-8") if path.exists() else ""


def clear_feedback(task: Task):
    (task.dir / FEEDBACK_FILE).unlink(missing_ok=True)


def read_feedback_queue(task: Task) -> list[str]:
    path = task.dir / QUEUE_FILE
    if not path.exists():
        return []
    try:
        data = read_json(path)
    except StateError as e:
        logger.warning("Ignoring corrupt feedback queue for %s: %s", task.task_id, e)
        return []
    return [str(item) for item in data] if isinstance(data, list) else []


def _write_feedback_queue(task: Task, queue: list[str]):
    path = task.dir / QUEUE_FILE
    if not queue:
        path.unlink(missing_ok=True)
    else:
        write_json_atomic(path, queue)


def queue_feedback(task: Task, feedback: str) -> int:
    """Append feedback to the queue. Returns the new queue length."""
    queue = read_feedback_queue(task)
    queue.append(feedback)
    _write_feedback_queue(task, queue)
    return len(queue)


def pop_feedback_queue(task: Task) -> str | None:
    queue = read_feedback_queue(task)
    if not queue:
        return None
    first = queue.pop(0)
    _write_feedback_queue(task, queue)
    return first


def remove_feedback_queue_item(task: Task, index: int):
    queue = read_feedback_queue(task)
    if 0 <= index < len(queue):
        queue.pop(index)
        _write_feedback_queue(task, queue)


def clear_feedback_queue(task: Task):
    (task.dir / QUEUE_FILE).unlink(missing_ok=True)


# ── Serialization ────────────────────────────────────────────────────────────


def _task_to_dict(task: Task) -> dict:
    return {
        "name": task.name,
        "branch_name": task.branch_name,
        "status": task.status.value,
        "flow_name": task.flow_name,
        "current_agent": task.current_agent,
        "flow_step": task.flow_step,
        "created_at": task.created_at.isoformat() if task.created_at else None,
        "updated_at": task.updated_at.isoformat() if task.updated_at else None,
        "review_after": task.review_after,
        "linked_pr": (
            {
                "number": task.linked_pr.number,
                "url": task.linked_pr.url,
                "owned": task.linked_pr.owned,
                "author": task.linked_pr.author,
            }
            if task.linked_pr
            else None
        ),
        "last_review_count": task.last_review_count,
        "review_addressed": task.review_addressed,
        "seen": task.seen,
        "repos": [
            {
                "repo_name": r.repo_name,
                "worktree_path": str(r.worktree_path),
                "tmux_session": r.tmux_session,
            }
            for r in task.repos
        ],
        "parent_dir": str(task.parent_dir) if task.parent_dir is not None else None,
    }


def _load_from_dir(task_dir: Path) -> Task:
    data = read_json(task_dir / META_FILE)
    if not isinstance(data, dict):
        raise StateError(f"{task_dir / META_FILE} is not a JSON object")
    try:
        return _dict_to_task(data, task_dir)
    except (KeyError, TypeError, ValueError) as e:
        raise StateError(f"Incompatible task record in {task_dir}: {e!r}") from e


def _dict_to_task(data: dict, task_dir: Path) -> Task:
    pr = data.get("linked_pr")
    return Task(
        name=data["name"],
        branch_name=data["branch_name"],
        flow_name=data["flow_name"],
        dir=task_dir,
        status=TaskStatus(data["status"]),
        current_agent=data.get("current_agent"),
        flow_step=int(data["flow_step"]),
        created_at=_parse_dt(data.get("created_at")),
        updated_at=_parse_dt(data.get("updated_at")),
        review_after=bool(data.get("review_after", False)),
        linked_pr=(
            LinkedPr(
                number=int(pr["number"]),
                url=pr["url"],
                owned=pr.get("owned", True),
                author=pr.get("author"),
            )
            if pr
            else None
        ),
        last_review_count=data.get("last_review_count"),
        review_addressed=bool(data.get("review_addressed", False)),
        seen=bool(data.get("seen", False)),
        repos=[
            RepoEntry(
                repo_name=r["repo_name"],
                worktree_path=Path(r["worktree_path"]),
                tmux_session=r["tmux_session"],
            )
            for r in data["repos"]
        ],
        parent_dir=Path(data["parent_dir"]) if data.get("parent_dir") else None,
    )


def _parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)


def task_summary(task: Task) -> dict:
    """JSON-friendly view of a task for `agman list --json` and the MCP server."""
    data = _task_to_dict(task)
    data["task_id"] = task.task_id
    data["dir"] = str(task.dir)
    return data
