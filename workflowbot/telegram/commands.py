"""
Command definitions and message formatting helpers for the Telegram bot.
"""
from dataclasses import dataclass
from typing import List, Tuple

from ..github_client import WorkflowRun


@dataclass
class BotCommand:
    """Telegram bot command definition."""
    command: str
    description: str


COMMANDS: List[BotCommand] = [
    BotCommand("start", "Welcome message"),
    BotCommand("help", "List all commands"),
    BotCommand("addtoken", "Save your GitHub token (encrypted) - /addtoken <token>"),
    BotCommand("deltoken", "Delete your saved token"),
    BotCommand("mytoken_status", "Latest workflow run, using your token"),
    BotCommand("run", "Start the workflow - /run [ref]"),
]

MSG_ACCESS_DENIED = "Access denied."
MSG_UNKNOWN_COMMAND = "Unknown command. Send /help for the list of commands."
MSG_ADDTOKEN_USAGE = "Usage: /addtoken <token>"
MSG_TOKEN_SAVED = (
    "Token saved (encrypted).\n"
    "You may want to delete your /addtoken message from this chat."
)
MSG_TOKEN_DELETED = "Your token has been deleted."
MSG_NO_TOKEN = "No token available (neither your own nor a global one)."
MSG_NO_RUNS = "No workflow runs found."
MSG_ALREADY_RUNNING = "Workflow is already running."
MSG_RERUN_STARTED = "Workflow rerun started."
MSG_START_FAILED = "Could not start the workflow."
MSG_STORAGE_FAILED = "Token storage is unavailable right now. Please try again later."
MSG_INTERNAL_ERROR = "Something went wrong while handling your command."


def parse_command(text: str) -> Tuple[str, List[str]]:
    """
    Split a message into (command, args).

    The command is lower-cased without a ``@botname`` suffix. Text that is
    not a command yields ``("", [])``.
    """
    parts = (text or "").strip().split()
    if not parts or not parts[0].startswith("/"):
        return "", []
    command = parts[0][1:].split("@", 1)[0].lower()
    return command, parts[1:]


def format_help_text() -> str:
    """Format the help message listing all commands."""
    lines = ["Workflow bot commands:\n"]
    for cmd in COMMANDS:
        lines.append(f"/{cmd.command} - {cmd.description}")
    return "\n".join(lines)


def format_welcome_text(user_id: int) -> str:
    return f"Bot is ready (your Telegram ID: {user_id}).\nSend /help for the list of commands."


def format_latest_run(run: WorkflowRun) -> str:
    """Format the latest run for /mytoken_status."""
    lines = [
        f"Latest run id={run.id}",
        f"status={run.status}",
        f"conclusion={run.conclusion or '-'}",
    ]
    if run.head_branch:
        lines.append(f"branch={run.head_branch}")
    if run.html_url:
        lines.append(run.html_url)
    return "\n".join(lines)


def format_dispatched(ref: str) -> str:
    return f"Workflow requested on branch {ref}."


def format_rerun_failed(status: int) -> str:
    return f"Could not restart the workflow: {status}"


def format_upstream_error(error) -> str:
    """User-facing text for an UpstreamError."""
    if error.status is None:
        return f"GitHub error: {error.message or 'request failed'}"
    if error.message:
        return f"GitHub error: {error.status} ({error.message})"
    return f"GitHub error: {error.status}"
