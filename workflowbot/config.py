"""
Runtime settings for workflowbot.

All configuration comes from the environment (optionally seeded from a
``.env`` file) and is loaded once at startup into an immutable ``Settings``.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, List, Mapping, Optional

from dotenv import load_dotenv

DEFAULT_GITHUB_API = "https://api.github.com"
DEFAULT_TOKENS_FILE = "tokens.json"
DEFAULT_REF = "main"
DEFAULT_HTTP_TIMEOUT = 15.0

STORE_BACKENDS = ("file", "cloudflare-kv", "memory")


class ConfigError(Exception):
    """Configuration is missing or invalid; the bot cannot start."""
    pass


def parse_allowed_users(raw: Optional[str]) -> FrozenSet[int]:
    """Parse a comma separated list of Telegram user ids."""
    ids = set()
    for part in (raw or "").split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.add(int(part))
        except ValueError:
            raise ConfigError(f"ALLOWED_USERS contains a non-numeric id: {part!r}")
    return frozenset(ids)


def _mask(value: str) -> str:
    if not value:
        return ""
    if len(value) > 10:
        return value[:4] + "..." + value[-4:]
    return "***"


@dataclass(frozen=True)
class Settings:
    """Immutable bot configuration."""
    telegram_token: str
    bot_secret: str
    repo_owner: str
    repo_name: str
    workflow_id: str
    github_token: Optional[str] = None
    allowed_users: FrozenSet[int] = field(default_factory=frozenset)
    token_store: str = "file"
    tokens_file: Path = Path(DEFAULT_TOKENS_FILE)
    cf_account_id: str = ""
    cf_kv_namespace_id: str = ""
    cf_api_token: str = ""
    webhook_secret: str = ""
    default_ref: str = DEFAULT_REF
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    github_api_url: str = DEFAULT_GITHUB_API

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``
            dotenv: Load ``.env`` from the working directory first (only when
                reading ``os.environ``)

        Raises:
            ConfigError: if a required value is missing or a value is malformed
        """
        if environ is None:
            if dotenv:
                load_dotenv(Path.cwd() / ".env")
            environ = os.environ

        def get(name: str, default: str = "") -> str:
            return (environ.get(name) or default).strip()

        missing: List[str] = [
            name for name in ("TELEGRAM_TOKEN", "BOT_SECRET", "REPO_OWNER", "REPO_NAME", "WORKFLOW_ID")
            if not get(name)
        ]
        if missing:
            raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

        backend = get("TOKEN_STORE", "file").lower()
        if backend not in STORE_BACKENDS:
            raise ConfigError(
                f"TOKEN_STORE must be one of {', '.join(STORE_BACKENDS)}, got {backend!r}"
            )
        if backend == "cloudflare-kv":
            kv_missing = [
                name for name in ("CF_ACCOUNT_ID", "CF_KV_NAMESPACE_ID", "CF_API_TOKEN")
                if not get(name)
            ]
            if kv_missing:
                raise ConfigError(
                    f"TOKEN_STORE=cloudflare-kv requires: {', '.join(kv_missing)}"
                )

        raw_timeout = get("WORKFLOWBOT_HTTP_TIMEOUT", str(DEFAULT_HTTP_TIMEOUT))
        try:
            timeout = float(raw_timeout)
        except ValueError:
            raise ConfigError(f"WORKFLOWBOT_HTTP_TIMEOUT must be a number, got {raw_timeout!r}")
        if timeout <= 0:
            raise ConfigError("WORKFLOWBOT_HTTP_TIMEOUT must be positive")

        return cls(
            telegram_token=get("TELEGRAM_TOKEN"),
            bot_secret=get("BOT_SECRET"),
            repo_owner=get("REPO_OWNER"),
            repo_name=get("REPO_NAME"),
            workflow_id=get("WORKFLOW_ID"),
            github_token=get("GITHUB_TOKEN") or None,
            allowed_users=parse_allowed_users(environ.get("ALLOWED_USERS")),
            token_store=backend,
            tokens_file=Path(get("TOKENS_FILE", DEFAULT_TOKENS_FILE)),
            cf_account_id=get("CF_ACCOUNT_ID"),
            cf_kv_namespace_id=get("CF_KV_NAMESPACE_ID"),
            cf_api_token=get("CF_API_TOKEN"),
            webhook_secret=get("WEBHOOK_SECRET"),
            default_ref=get("WORKFLOWBOT_DEFAULT_REF", DEFAULT_REF),
            http_timeout=timeout,
            github_api_url=get("GITHUB_API_URL", DEFAULT_GITHUB_API).rstrip("/"),
        )

    def to_safe_dict(self) -> Dict[str, str]:
        """Return settings with secrets masked, for display."""
        return {
            "telegram_token": _mask(self.telegram_token),
            "bot_secret": _mask(self.bot_secret),
            "github_token": _mask(self.github_token or "") or "(not set)",
            "repository": f"{self.repo_owner}/{self.repo_name}",
            "workflow_id": self.workflow_id,
            "allowed_users": ", ".join(str(u) for u in sorted(self.allowed_users)) or "(everyone)",
            "token_store": self.token_store,
            "tokens_file": str(self.tokens_file) if self.token_store == "file" else "",
            "webhook_secret": "set" if self.webhook_secret else "(not set)",
            "default_ref": self.default_ref,
            "http_timeout": f"{self.http_timeout:g}s",
            "github_api_url": self.github_api_url,
        }
