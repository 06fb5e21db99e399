"""Tmux subprocess wrappers for per-task terminal sessions."""

import logging
import subprocess
from pathlib import Path

from agman.errors import TmuxError

logger = logging.getLogger(__name__)

# Window name -> command started in it. The "agman" window stays a bare shell;
# flow runs are dispatched into it with send_keys.
DEFAULT_WINDOWS: list[tuple[str, str | None]] = [
    ("nvim", "nvim"),
    ("lazygit", "lazygit"),
    ("claude", "claude --dangerously-skip-permissions"),
    ("shell", "git status && git branch --show-current"),
    ("agman", None),
]


def run_tmux(args: list[str]) -> str:
    """Run a tmux command and return stdout. Raises TmuxError on failure."""
    cmd = ["tmux"] + args
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=True)
        return result.stdout.strip()
    except subprocess.CalledProcessError as e:
        raise TmuxError(f"tmux {' '.join(args)} failed: {e.stderr.strip()}") from e
    except OSError as e:
        raise TmuxError(f"tmux {' '.join(args)} could not run: {e}") from e


def session_exists(name: str) -> bool:
    try:
        run_tmux(["has-session", "-t", f"={name}"])
        return True
    except TmuxError:
        return False


def create_session(
    name: str,
    working_dir: str | Path,
    windows: list[tuple[str, str | None]] | None = None,
):
    """Create a detached session with one window per (name, command) entry.

    A session that fails partway through setup is killed again, so a later
    session_exists() never sees a half-built one.
    """
    windows = windows or DEFAULT_WINDOWS
    wd = str(working_dir)
    first_name, _ = windows[0]
    run_tmux(["new-session", "-d", "-s", name, "-c", wd, "-n", first_name])
    try:
        for window_name, _ in windows[1:]:
            run_tmux(["new-window", "-t", f"={name}", "-n", window_name, "-c", wd])
        for window_name, command in windows:
            if command:
                send_keys(name, window_name, command)
        run_tmux(["select-window", "-t", f"={name}:{first_name}"])
    except TmuxError:
        logger.warning("Setting up tmux session %s failed, removing it", name)
        try:
            run_tmux(["kill-session", "-t", f"={name}"])
        except TmuxError as e:
            logger.warning("Could not remove tmux session %s: %s", name, e)
        raise


def kill_session(name: str):
    if not session_exists(name):
        return
    logger.debug("Killing tmux session %s", name)
    run_tmux(["kill-session", "-t", f"={name}"])


def send_keys(session: str, window: str, keys: str):
    """Type a command into a window and press enter."""
    run_tmux(["send-keys", "-t", f"={session}:{window}", keys, "C-m"])


def send_ctrl_c(session: str, window: str):
    """Interrupt whatever is running in a window."""
    run_tmux(["send-keys", "-t", f"={session}:{window}", "C-c"])


def attach_session(name: str):
    """Switch the current client to the session, or attach when outside tmux."""
    try:
        run_tmux(["switch-client", "-t", f"={name}"])
        return
    except TmuxError:
        pass
    try:
        result = subprocess.run(["tmux", "attach-session", "-t", f"={name}"])
    except OSError as e:
        raise TmuxError(f"tmux attach-session could not run: {e}") from e
    if result.returncode != 0:
        raise TmuxError(f"Failed to attach to tmux session {name}")
