"""Flow runner: drives a task through its flow one agent step at a time.

Each step runs one agent to completion, classifies its output against the
step definition, runs the step's post hook when the flow moves on, and
persists the new `flow_step` before starting the next step. The task record
is re-read around every agent run; a status set by someone else (stop, hold)
always wins over what the runner would have done.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from agman.config import Config
from agman.core import actions, prompts, tasks, worktrees
from agman.core.agents import AgentInvoker, AgentResult, load_prompt_template
from agman.core.flows import (
    BlockedAction,
    FailAction,
    Flow,
    PostHook,
    ResolvedStep,
    StopCondition,
    load_flow_by_name,
)
from agman.errors import AgentError, AgmanError, ParseError, StateError
from agman.store.models import Task, TaskStatus

logger = logging.getLogger(__name__)

REFINER_AGENT = "refiner"

HOOKS: dict[PostHook, Callable[[Config, Task], Task]] = {
    PostHook.SETUP_REPOS: worktrees.setup_repos,
}


class Outcome(str, Enum):
    ADVANCE = "advance"
    LOOP_REPEAT = "loop_repeat"
    LOOP_EXIT = "loop_exit"
    SKIP = "skip"  # failed with on_fail=continue: move on without the post hook
    COMPLETE = "complete"
    PAUSE = "pause"
    STOP = "stop"
    FAIL = "fail"


@dataclass(frozen=True)
class Transition:
    outcome: Outcome
    next_step: int | None = None
    status: TaskStatus | None = None
    reason: str = ""

    @property
    def moves_on(self) -> bool:
        return self.next_step is not None


# ── Classification ───────────────────────────────────────────────────────────


def _step_done(step: ResolvedStep, reason: str) -> Transition:
    if step.is_loop_end:
        return Transition(Outcome.LOOP_REPEAT, next_step=step.loop.start, reason=reason)
    return Transition(Outcome.ADVANCE, next_step=step.index + 1, reason=reason)


def failure(step: ResolvedStep, reason: str) -> Transition:
    """Apply the step's on_fail policy to a failed run."""
    if step.step.on_fail == FailAction.CONTINUE:
        moved = _step_done(step, reason)
        return Transition(Outcome.SKIP, next_step=moved.next_step, reason=reason)
    if step.step.on_fail == FailAction.PAUSE:
        return Transition(Outcome.FAIL, status=TaskStatus.ON_HOLD, reason=reason)
    return Transition(Outcome.FAIL, status=TaskStatus.FAILED, reason=reason)


def classify(step: ResolvedStep, result: AgentResult) -> Transition:
    """Decide what happens after `step` produced `result`. Pure."""
    if result.cancelled:
        return Transition(Outcome.STOP, status=TaskStatus.STOPPED, reason="agent was cancelled")

    condition = result.condition
    if condition == StopCondition.TASK_COMPLETE:
        return Transition(Outcome.COMPLETE, status=TaskStatus.DONE, reason=condition.value)
    if condition == StopCondition.INPUT_NEEDED:
        return Transition(Outcome.PAUSE, status=TaskStatus.INPUT_NEEDED, reason=condition.value)
    if condition == StopCondition.TASK_BLOCKED:
        if step.step.on_blocked == BlockedAction.CONTINUE:
            return _step_done(step, condition.value)
        return Transition(Outcome.PAUSE, status=TaskStatus.ON_HOLD, reason=condition.value)

    if result.exit_code != 0:
        return failure(step, f"agent exited with status {result.exit_code}")
    if condition is None:
        return failure(step, "agent output has no stop condition")

    if step.is_loop_end and condition == step.loop.until:
        return Transition(Outcome.LOOP_EXIT, next_step=step.loop.end + 1, reason=condition.value)
    if condition == step.until:
        return _step_done(step, condition.value)
    if step.loop is not None:
        return Transition(Outcome.LOOP_REPEAT, next_step=step.loop.start, reason=condition.value)
    return failure(step, f"unexpected {condition.value}, step waits for {step.until.value}")


# ── Runner ───────────────────────────────────────────────────────────────────


def _stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


class FlowRunner:
    def __init__(
        self,
        config: Config,
        invoke: AgentInvoker,
        notify: Callable[[Task], None] | None = None,
        hooks: dict[PostHook, Callable[[Config, Task], Task]] | None = None,
    ):
        self.config = config
        self.invoke = invoke
        self.notify = notify
        self.hooks = HOOKS if hooks is None else hooks

    def run(self, task: Task, flow: Flow | None = None) -> Task:
        """Run the task's flow (or `flow`) until it completes, pauses, fails or is stopped."""
        task = tasks.reload_task(task)
        if task.status.is_terminal:
            logger.info("Task %s is already %s", task.task_id, task.status.label)
            return task

        try:
            if flow is None:
                flow = load_flow_by_name(self.config, task.flow_name)
        except ParseError as e:
            logger.error("Cannot load flow for %s: %s", task.task_id, e)
            tasks.append_agent_log(task, f"\n--- Flow error: {e} ---")
            tasks.update_status(task, TaskStatus.FAILED)
            return self._finish(task)

        if task.status != TaskStatus.RUNNING:
            tasks.update_status(task, TaskStatus.RUNNING)
        logger.info("Running flow %s for %s from step %d", flow.name, task.task_id, task.flow_step)

        while True:
            task = tasks.reload_task(task)
            if task.status != TaskStatus.RUNNING:
                logger.info("Task %s is %s, stopping flow", task.task_id, task.status.label)
                break

            step = flow.step(task.flow_step)
            if step is None:
                logger.info("Flow %s finished for %s", flow.name, task.task_id)
                tasks.update_agent(task, None)
                tasks.update_status(task, TaskStatus.DONE)
                break

            transition = self._run_step(task, step)
            task = tasks.reload_task(task)
            if task.status != TaskStatus.RUNNING:
                logger.info("Task %s became %s during %s", task.task_id, task.status.label, step.agent)
                break

            task = self._apply(task, step, transition)
            if task.status != TaskStatus.RUNNING:
                break

        return self._finish(task)

    def _run_step(self, task: Task, step: ResolvedStep) -> Transition:
        try:
            template = load_prompt_template(self.config, step.agent)
            cwd = actions.working_dir(task)
            prompt = prompts.build_prompt(task, template)
        except (AgentError, StateError, OSError) as e:
            logger.error("Cannot run %s for %s: %s", step.agent, task.task_id, e)
            tasks.append_agent_log(task, f"\n--- Agent: {step.agent} could not start: {e} ---")
            return failure(step, str(e))

        tasks.update_agent(task, step.agent)
        logger.info("Step %d: running %s (until %s)", step.index, step.agent, step.until.value)
        tasks.append_agent_log(task, f"\n--- Agent: {step.agent} started at {_stamp()} ---")

        try:
            result = self.invoke(prompt, cwd, task)
        except (AgentError, OSError) as e:
            logger.error("Agent %s failed to run for %s: %s", step.agent, task.task_id, e)
            tasks.append_agent_log(task, f"\n--- Agent: {step.agent} failed: {e} ---")
            return failure(step, str(e))

        condition = result.condition
        tasks.append_agent_log(
            task,
            f"\n--- Agent: {step.agent} finished at {_stamp()} with: "
            f"{condition.value if condition else 'no signal'} (exit: {result.exit_code}) ---",
        )
        if step.agent == REFINER_AGENT and not result.cancelled:
            tasks.clear_feedback(task)
        return classify(step, result)

    def _apply(self, task: Task, step: ResolvedStep, transition: Transition) -> Task:
        logger.info(
            "Step %d (%s): %s%s",
            step.index, step.agent, transition.outcome.value,
            f" ({transition.reason})" if transition.reason else "",
        )

        if transition.moves_on:
            hook = step.step.post_hook
            if hook is not None and transition.outcome != Outcome.SKIP:
                try:
                    task = self.hooks[hook](self.config, task)
                except (AgmanError, OSError) as e:
                    logger.error("Post hook %s failed for %s: %s", hook.value, task.task_id, e)
                    tasks.append_agent_log(task, f"\n--- Post hook {hook.value} failed: {e} ---")
                    task = tasks.reload_task(task)
                    return tasks.update_status(task, TaskStatus.FAILED)
                task = tasks.reload_task(task)
            return tasks.set_flow_step(task, transition.next_step)

        if transition.reason and transition.outcome == Outcome.FAIL:
            tasks.append_agent_log(task, f"\n--- Flow failed at step {step.index}: {transition.reason} ---")
        if transition.outcome in (Outcome.COMPLETE, Outcome.STOP):
            task.current_agent = None
        return tasks.update_status(task, transition.status)

    def _finish(self, task: Task) -> Task:
        if self.notify is not None:
            self.notify(task)
        return task
