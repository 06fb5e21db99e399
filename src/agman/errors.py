"""Exception hierarchy shared across agman."""


class AgmanError(Exception):
    """Base class for all agman errors."""


class ParseError(AgmanError):
    """Raised when a flow definition or task-file section is malformed."""


class ResourceError(AgmanError):
    """Raised when a checkout or session operation fails."""


class GitError(ResourceError):
    """Raised when a git command fails."""


class TmuxError(ResourceError):
    """Raised when a tmux command fails."""


class AgentError(AgmanError):
    """Raised when the agent process cannot be run or returns unusable output."""


class StateError(AgmanError):
    """Raised when persisted task state is unreadable or used inconsistently."""


class TaskNotFound(StateError):
    """Raised when no task directory matches the requested id."""
