"""TASK.md protocol shared between the orchestrator and agent processes.

The file is plain markdown:

    # Goal
    <free text>

    # Plan
    ## Completed
    - [x] <done item>
    ## Remaining
    - [ ] <pending item>

    # Repos
    - <repo-name>: <rationale>

`# Repos` only appears in multi-repo tasks and is written by the
repo-inspector agent. Everything here is pure text processing so it can be
tested without touching the filesystem.
"""

from dataclasses import dataclass, field

from agman.errors import ParseError

REPOS_HEADING = "Repos"


@dataclass
class Plan:
    completed: list[str] = field(default_factory=list)
    remaining: list[str] = field(default_factory=list)


def render_task_file(goal: str) -> str:
    return f"# Goal\n{goal}\n\n# Plan\n(To be created by planner agent)\n"


def _heading(line: str) -> tuple[int, str] | None:
    """Return (level, title) for a markdown heading line, else None."""
    stripped = line.strip()
    if not stripped.startswith("#"):
        return None
    level = len(stripped) - len(stripped.lstrip("#"))
    title = stripped[level:]
    if title and not title[0].isspace():
        return None
    return level, title.strip()


def get_section(text: str, heading: str) -> str | None:
    """Body of the first level-1 section titled `heading`, or None if absent."""
    body: list[str] | None = None
    for line in text.splitlines():
        h = _heading(line)
        if h and h[0] == 1:
            if body is not None:
                break
            if h[1] == heading:
                body = []
            continue
        if body is not None:
            body.append(line)
    if body is None:
        return None
    return "\n".join(body).strip("\n")


def parse_repos(text: str) -> list[str]:
    """Repo names listed under `# Repos`, in order.

    The section runs until the next heading of any level. A bullet without a
    colon still yields its bare name; a missing section yields [].
    """
    repos: list[str] = []
    in_section = False
    for line in text.splitlines():
        h = _heading(line)
        if h:
            if in_section:
                break
            in_section = h == (1, REPOS_HEADING)
            continue
        if not in_section:
            continue
        stripped = line.strip()
        if not stripped.startswith("- "):
            continue
        name = stripped[2:].split(":", 1)[0].strip().strip("`").strip()
        if name and name not in repos:
            repos.append(name)
    return repos


def parse_required_repos(text: str) -> list[str]:
    """Like parse_repos, but every name must be a plain directory name and the list non-empty."""
    repos = parse_repos(text)
    if not repos:
        raise ParseError("TASK.md has no repositories listed under '# Repos'")
    for name in repos:
        if "/" in name or "\\" in name or name in (".", ".."):
            raise ParseError(f"Invalid repository name in '# Repos': {name!r}")
    return repos


def parse_plan(text: str) -> Plan:
    """Checklist items under `# Plan`."""
    plan = Plan()
    section = get_section(text, "Plan") or ""
    for line in section.splitlines():
        stripped = line.strip()
        if stripped[:5].lower() == "- [x]":
            plan.completed.append(stripped[5:].strip())
        elif stripped.startswith("- [ ]"):
            plan.remaining.append(stripped[5:].strip())
    return plan
