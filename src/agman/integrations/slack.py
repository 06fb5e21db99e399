"""Slack notifications when a flow run ends."""

import logging
from dataclasses import dataclass

from slack_sdk.errors import SlackApiError

from agman.config import Config
from agman.errors import AgmanError
from agman.store.models import Task, TaskStatus

logger = logging.getLogger(__name__)

STATUS_EMOJI = {
    TaskStatus.DONE: ":white_check_mark:",
    TaskStatus.FAILED: ":red_circle:",
    TaskStatus.INPUT_NEEDED: ":raising_hand:",
    TaskStatus.ON_HOLD: ":double_vertical_bar:",
}

# Only these end states need a human
NOTIFY_STATUSES = set(STATUS_EMOJI)


class SlackError(AgmanError):
    """Raised when a Slack operation fails."""


@dataclass
class SlackMessage:
    channel: str
    ts: str


def is_configured(config: Config) -> bool:
    return bool(config.slack_bot_token and config.slack_channel)


def post_to_channel(config: Config, text: str, blocks: list[dict] | None = None) -> SlackMessage:
    """Post to the configured notification channel."""
    if not is_configured(config):
        raise SlackError("Slack not configured: set SLACK_BOT_TOKEN and AGMAN_SLACK_CHANNEL")

    from slack_sdk import WebClient

    client = WebClient(token=config.slack_bot_token)
    try:
        response = client.chat_postMessage(channel=config.slack_channel, text=text, blocks=blocks)
    except SlackApiError as e:
        raise SlackError(f"Slack API error: {e.response['error']}") from e
    except OSError as e:
        raise SlackError(f"Could not reach Slack: {e}") from e
    return SlackMessage(channel=response["channel"], ts=response["ts"])


def format_task_notification(task: Task) -> list[dict]:
    """Slack blocks describing where a task's flow run stopped."""
    emoji = STATUS_EMOJI.get(task.status, ":grey_question:")
    where = f"flow {task.flow_name}, step {task.flow_step}"
    if task.current_agent:
        where += f", last agent {task.current_agent}"
    return [
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": f"{emoji} *{task.task_id}* is {task.status.label}\n{where}",
            },
        }
    ]


def task_notifier(config: Config):
    """A FlowRunner notifier, or None when Slack is not set up. Never raises."""
    if not is_configured(config):
        return None

    def notify(task: Task):
        if task.status not in NOTIFY_STATUSES:
            return
        try:
            post_to_channel(
                config,
                f"agman task {task.task_id} is {task.status.label}",
                format_task_notification(task),
            )
        except SlackError as e:
            logger.warning("Slack notification for %s failed: %s", task.task_id, e)

    return notify
