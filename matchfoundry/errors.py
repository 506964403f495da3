"""Error taxonomy shared by the match engine, the chat state machine and the store."""

from typing import Optional


class MatchFoundryError(Exception):
    """Base class for errors surfaced to callers."""


class ValidationError(MatchFoundryError):
    """Missing or malformed input (empty slots, missing ids, foreign slot)."""


class NotFoundError(MatchFoundryError):
    """A referenced record does not exist."""

    def __init__(self, kind: str, key: str) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} with id {key} not found")


class ConflictError(MatchFoundryError):
    """The record was already decided by someone else (e.g. a slot was already chosen)."""


class InternalError(MatchFoundryError):
    """Unexpected failure from the storage layer.

    The original message is kept for diagnostics and the cause is chained.
    """

    def __init__(self, message: str, detail: Optional[str] = None) -> None:
        self.detail = detail
        super().__init__(f"{message}: {detail}" if detail else message)
