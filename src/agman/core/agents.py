"""Agent process invocation.

An agent is an external CLI (claude by default) run in print mode with the
prompt on stdin. Its stdout is streamed line by line into the task's
agent.log; the runner only looks at the exit status and the last stop
condition token in that output.
"""

import logging
import shlex
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from agman.config import Config
from agman.core import tasks
from agman.core.flows import StopCondition
from agman.errors import AgentError
from agman.store.models import Task

logger = logging.getLogger(__name__)

AGENT_FLAGS = ["-p", "--dangerously-skip-permissions"]
# Seconds an agent gets to exit after SIGTERM
TERMINATE_TIMEOUT = 10


@dataclass
class AgentResult:
    output: str
    exit_code: int
    cancelled: bool = False

    @property
    def condition(self) -> StopCondition | None:
        return StopCondition.from_output(self.output)


# (prompt, working directory, task) -> result
AgentInvoker = Callable[[str, Path, Task], AgentResult]


def load_prompt_template(config: Config, agent_name: str) -> str:
    path = config.prompt_path(agent_name)
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise AgentError(
            f"No prompt for agent '{agent_name}' at {path}. Run 'agman init' to create the defaults."
        ) from None


def _terminate(proc: subprocess.Popen) -> int:
    proc.terminate()
    try:
        return proc.wait(timeout=TERMINATE_TIMEOUT)
    except subprocess.TimeoutExpired:
        logger.warning("Agent (pid %d) ignored SIGTERM, killing it", proc.pid)
        proc.kill()
        return proc.wait()


def run_agent_process(
    config: Config,
    prompt: str,
    cwd: Path,
    on_line: Callable[[str], None] | None = None,
) -> AgentResult:
    """Run the agent command to completion, feeding `prompt` on stdin.

    A process killed by a signal, or interrupted with Ctrl-C while we wait
    on it, comes back as cancelled. Output that is not valid UTF-8 is
    decoded with replacement characters. Any other error while the agent
    runs terminates it and raises AgentError.
    """
    cmd = shlex.split(config.agent_command) + AGENT_FLAGS
    logger.debug("Starting agent: %s (cwd=%s)", " ".join(cmd), cwd)
    try:
        proc = subprocess.Popen(
            cmd,
            cwd=cwd,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
        )
    except OSError as e:
        raise AgentError(f"Could not start agent command '{cmd[0]}': {e}") from e

    lines: list[str] = []
    try:
        try:
            proc.stdin.write(prompt)
            proc.stdin.close()
        except BrokenPipeError:
            logger.warning("Agent closed stdin before reading the whole prompt")

        for line in proc.stdout:
            line = line.rstrip("\n")
            lines.append(line)
            if on_line:
                on_line(line)
        exit_code = proc.wait()
    except KeyboardInterrupt:
        logger.info("Interrupted, terminating agent (pid %d)", proc.pid)
        exit_code = _terminate(proc)
        return AgentResult(output="\n".join(lines), exit_code=exit_code, cancelled=True)
    except Exception as e:
        logger.error("Agent (pid %d) aborted: %s", proc.pid, e)
        _terminate(proc)
        raise AgentError(f"Agent run aborted: {e}") from e
    finally:
        proc.stdout.close()

    if exit_code != 0:
        logger.warning("Agent process exited with status %d", exit_code)
    return AgentResult(output="\n".join(lines), exit_code=exit_code, cancelled=exit_code < 0)


def process_invoker(config: Config, echo: Callable[[str], None] | None = None) -> AgentInvoker:
    """An invoker that runs the real agent command and tees its output to agent.log."""

    def invoke(prompt: str, cwd: Path, task: Task) -> AgentResult:
        with (task.dir / tasks.AGENT_LOG).open("a", encoding="utf-8") as log:

            def on_line(line: str):
                log.write(line + "\n")
                log.flush()
                if echo:
                    echo(line)

            return run_agent_process(config, prompt, cwd, on_line)

    return invoke
