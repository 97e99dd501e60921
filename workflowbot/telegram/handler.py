"""
Transport-neutral command handling for the workflow bot.

Each inbound update is handled on its own: access check, credential
resolution, GitHub call, reply text. Nothing is remembered between messages.
"""
from typing import Awaitable, Callable, Dict, List, Optional

from ..access import AccessControl
from ..crypto import CredentialCipher, CredentialError
from ..github_client import GitHubClient, UpstreamError
from ..logging_config import get_logger
from ..token_store import StorageError, TokenStore, create_token_store
from .commands import (
    MSG_ACCESS_DENIED,
    MSG_ADDTOKEN_USAGE,
    MSG_ALREADY_RUNNING,
    MSG_INTERNAL_ERROR,
    MSG_NO_RUNS,
    MSG_NO_TOKEN,
    MSG_RERUN_STARTED,
    MSG_START_FAILED,
    MSG_STORAGE_FAILED,
    MSG_TOKEN_DELETED,
    MSG_TOKEN_SAVED,
    MSG_UNKNOWN_COMMAND,
    format_dispatched,
    format_help_text,
    format_latest_run,
    format_rerun_failed,
    format_upstream_error,
    format_welcome_text,
    parse_command,
)
from .models import InboundUpdate

logger = get_logger("workflowbot.telegram.handler")


class CommandError(Exception):
    """A command could not be carried out for a user-visible reason."""
    pass


class AccessDenied(CommandError):
    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User {user_id} is not allowed")


class NoCredentialError(CommandError):
    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"No GitHub token available for user {user_id}")


class CommandHandler:
    """Routes chat commands to the token store and the GitHub client."""

    def __init__(
        self,
        access: AccessControl,
        store: TokenStore,
        cipher: CredentialCipher,
        github: GitHubClient,
        global_token: Optional[str] = None,
        default_ref: str = "main",
    ):
        self.access = access
        self.store = store
        self.cipher = cipher
        self.github = github
        self.global_token = global_token or None
        self.default_ref = default_ref

        self._routes: Dict[str, Callable[[InboundUpdate, List[str]], Awaitable[str]]] = {
            "start": self._cmd_start,
            "help": self._cmd_help,
            "addtoken": self._cmd_addtoken,
            "deltoken": self._cmd_deltoken,
            "mytoken_status": self._cmd_status,
            "run": self._cmd_run,
        }

    @classmethod
    def from_settings(cls, settings) -> "CommandHandler":
        """Wire the handler's collaborators from loaded settings."""
        return cls(
            access=AccessControl(settings.allowed_users),
            store=create_token_store(settings),
            cipher=CredentialCipher.from_secret(settings.bot_secret),
            github=GitHubClient.from_settings(settings),
            global_token=settings.github_token,
            default_ref=settings.default_ref,
        )

    async def aclose(self):
        """Close HTTP sessions held by the GitHub client and the store."""
        await self.github.close()
        await self.store.close()

    async def handle(self, update: InboundUpdate) -> str:
        """Handle one update and return the reply text. Never raises."""
        command, args = parse_command(update.text)
        try:
            if not self.access.is_allowed(update.sender_id):
                raise AccessDenied(update.sender_id)
            action = self._routes.get(command)
            if action is None:
                return MSG_UNKNOWN_COMMAND
            return await action(update, args)
        except AccessDenied:
            logger.warning_with("Access denied", user_id=update.sender_id, command=command)
            return MSG_ACCESS_DENIED
        except NoCredentialError:
            return MSG_NO_TOKEN
        except UpstreamError as e:
            logger.error_with("GitHub request failed", user_id=update.sender_id,
                              command=command, status=e.status, error=e.message)
            return format_upstream_error(e)
        except StorageError as e:
            logger.error_with("Token store failure", user_id=update.sender_id,
                              command=command, error=str(e))
            return MSG_STORAGE_FAILED
        except Exception:
            logger.exception(f"Unhandled error in /{command} for user {update.sender_id}")
            return MSG_INTERNAL_ERROR

    async def resolve_token(self, user_id: int) -> str:
        """
        Per-user stored token, else the global token.

        Raises:
            NoCredentialError: neither is available
        """
        blob = await self.store.get(user_id)
        if blob:
            try:
                return self.cipher.decrypt(blob)
            except CredentialError as e:
                logger.warning_with(
                    "Stored token could not be decrypted; ignoring it",
                    user_id=user_id, reason=type(e).__name__,
                )
        if self.global_token:
            return self.global_token
        raise NoCredentialError(user_id)

    # ─── Commands ──────────────────────────────────────────────────────

    async def _cmd_start(self, update, args):
        return format_welcome_text(update.sender_id)

    async def _cmd_help(self, update, args):
        return format_help_text()

    async def _cmd_addtoken(self, update, args):
        token = " ".join(args).strip()
        if not token:
            return MSG_ADDTOKEN_USAGE
        await self.store.put(update.sender_id, self.cipher.encrypt(token))
        logger.info_with("Token saved", user_id=update.sender_id)
        return MSG_TOKEN_SAVED

    async def _cmd_deltoken(self, update, args):
        await self.store.delete(update.sender_id)
        logger.info_with("Token deleted", user_id=update.sender_id)
        return MSG_TOKEN_DELETED

    async def _cmd_status(self, update, args):
        token = await self.resolve_token(update.sender_id)
        runs = await self.github.list_runs(token)
        if not runs.total_count or runs.latest is None:
            return MSG_NO_RUNS
        return format_latest_run(runs.latest)

    async def _cmd_run(self, update, args):
        ref = args[0] if args else self.default_ref
        token = await self.resolve_token(update.sender_id)

        latest = (await self.github.list_runs(token)).latest
        if latest is not None and latest.is_active:
            return MSG_ALREADY_RUNNING

        dispatched = await self.github.dispatch(token, ref)
        if dispatched.accepted:
            logger.info_with("Workflow dispatched", user_id=update.sender_id, ref=ref)
            return format_dispatched(ref)

        if latest is None:
            return MSG_START_FAILED

        rerun = await self.github.rerun(token, latest.id)
        if rerun.accepted:
            logger.info_with("Workflow rerun requested", user_id=update.sender_id, run_id=latest.id)
            return MSG_RERUN_STARTED
        return format_rerun_failed(rerun.status)
