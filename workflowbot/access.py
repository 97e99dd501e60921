"""
Allow-list access control for bot commands.
"""
from typing import FrozenSet, Iterable, Union

from .config import parse_allowed_users


class AccessControl:
    """Static allow-list of Telegram user ids. Empty allows everyone."""

    def __init__(self, allowed_user_ids: Iterable[int] = ()):
        self._allowed: FrozenSet[int] = frozenset(int(u) for u in allowed_user_ids)

    @classmethod
    def from_csv(cls, raw: str) -> "AccessControl":
        return cls(parse_allowed_users(raw))

    @property
    def is_open(self) -> bool:
        return not self._allowed

    def is_allowed(self, user_id: Union[int, str]) -> bool:
        if not self._allowed:
            return True
        try:
            return int(user_id) in self._allowed
        except (TypeError, ValueError):
            return False
