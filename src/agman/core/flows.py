"""Flow definitions: YAML step sequences with loops, stop conditions and hooks.

A flow document looks like::

    name: new
    steps:
      - agent: planner
        until: AGENT_DONE
      - loop:
          - agent: coder
            until: AGENT_DONE
          - agent: checker
            until: AGENT_DONE
        until: TASK_COMPLETE

Loops are flattened when the flow is loaded so a task's `flow_step` is a
plain index into `Flow.steps`.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from agman.config import Config
from agman.errors import ParseError

logger = logging.getLogger(__name__)


class StopCondition(str, Enum):
    AGENT_DONE = "AGENT_DONE"
    TASK_COMPLETE = "TASK_COMPLETE"
    TASK_BLOCKED = "TASK_BLOCKED"
    TESTS_PASS = "TESTS_PASS"
    TESTS_FAIL = "TESTS_FAIL"
    INPUT_NEEDED = "INPUT_NEEDED"

    @classmethod
    def from_output(cls, output: str) -> "StopCondition | None":
        """The last sentinel token printed in `output`, if any."""
        matches = _SENTINEL_RE.findall(output)
        return cls(matches[-1]) if matches else None


_SENTINEL_RE = re.compile(r"\b(" + "|".join(c.value for c in StopCondition) + r")\b")


class BlockedAction(str, Enum):
    PAUSE = "pause"
    CONTINUE = "continue"


class FailAction(str, Enum):
    PAUSE = "pause"
    CONTINUE = "continue"


class PostHook(str, Enum):
    SETUP_REPOS = "setup_repos"


# ── Document models ──────────────────────────────────────────────────────────


class _FlowModel(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class AgentStep(_FlowModel):
    agent: str = Field(..., min_length=1)
    until: StopCondition
    on_blocked: BlockedAction | None = None
    on_fail: FailAction | None = None
    post_hook: PostHook | None = None


class LoopBlock(_FlowModel):
    loop: list[AgentStep] = Field(..., min_length=1)
    until: StopCondition

    @field_validator("loop", mode="before")
    @classmethod
    def _no_nested_loops(cls, value):
        if isinstance(value, list) and any(isinstance(item, dict) and "loop" in item for item in value):
            raise ValueError("nested loops are not supported")
        return value

    @property
    def steps(self) -> list[AgentStep]:
        return self.loop


class FlowDocument(_FlowModel):
    """A flow file. Stored commands add `id`, `description` and `requires_arg`."""

    name: str = Field(..., min_length=1)
    steps: list[AgentStep | LoopBlock] = Field(..., min_length=1)
    id: str | None = None
    description: str | None = None
    requires_arg: Literal["branch"] | None = None


@dataclass(frozen=True)
class LoopSpan:
    """Flattened index range [start, end] of a loop body plus its exit condition."""

    start: int
    end: int
    until: StopCondition


@dataclass
class ResolvedStep:
    index: int
    step: AgentStep
    loop: LoopSpan | None = None

    @property
    def agent(self) -> str:
        return self.step.agent

    @property
    def until(self) -> StopCondition:
        return self.step.until

    @property
    def is_loop_end(self) -> bool:
        return self.loop is not None and self.loop.end == self.index


@dataclass
class Flow:
    name: str
    elements: list[AgentStep | LoopBlock]
    steps: list[ResolvedStep] = field(default_factory=list)

    def step(self, index: int) -> ResolvedStep | None:
        if 0 <= index < len(self.steps):
            return self.steps[index]
        return None

    def __len__(self) -> int:
        return len(self.steps)


# ── Parsing ──────────────────────────────────────────────────────────────────


def _describe(error: ValidationError) -> str:
    problems = []
    for err in error.errors():
        loc = ".".join(str(part) for part in err["loc"])
        problems.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(problems)


def read_yaml(path: Path, kind: str = "Flow"):
    """Decode a YAML file. Raises ParseError when it is missing or not valid YAML."""
    try:
        with path.open("r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except FileNotFoundError:
        raise ParseError(f"{kind} file not found: {path}") from None
    except yaml.YAMLError as e:
        raise ParseError(f"Invalid YAML in {path}: {e}") from e


def parse_document(data, source: str = "<flow>") -> FlowDocument:
    try:
        return FlowDocument.model_validate(data)
    except ValidationError as e:
        raise ParseError(f"{source}: {_describe(e)}") from e


def build_flow(document: FlowDocument) -> Flow:
    """Flatten loops so every agent step gets a plain index."""
    resolved: list[ResolvedStep] = []
    for element in document.steps:
        if isinstance(element, LoopBlock):
            span = LoopSpan(
                start=len(resolved), end=len(resolved) + len(element.steps) - 1, until=element.until
            )
            for step in element.steps:
                resolved.append(ResolvedStep(index=len(resolved), step=step, loop=span))
        else:
            resolved.append(ResolvedStep(index=len(resolved), step=element))
    return Flow(name=document.name, elements=list(document.steps), steps=resolved)


def parse_flow(data, source: str = "<flow>") -> Flow:
    """Validate a decoded flow document and flatten its loops. Raises ParseError."""
    return build_flow(parse_document(data, source))


def load_flow(path: Path) -> Flow:
    logger.debug("Loading flow %s", path)
    flow = parse_flow(read_yaml(path), source=str(path))
    logger.debug("Flow %s loaded with %d steps", flow.name, len(flow))
    return flow


def resolve_flow_path(config: Config, flow_name: str) -> Path:
    """Flows live in flows/; stored commands double as flows from commands/."""
    path = config.flow_path(flow_name)
    if not path.exists() and config.command_path(flow_name).exists():
        return config.command_path(flow_name)
    return path


def load_flow_by_name(config: Config, flow_name: str) -> Flow:
    return load_flow(resolve_flow_path(config, flow_name))
