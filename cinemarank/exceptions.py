"""Errors surfaced by CinemaRank.

Every error carries a message that can be shown to the user as-is. None of
them is fatal to the process: each is scoped to the action that raised it.
"""
from typing import Dict, List, Optional


class CinemaRankError(Exception):
    """Base class for all CinemaRank errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CinemaRankError):
    """Input rejected before any transaction was opened."""

    def __init__(self, errors: Dict[str, List[str]]):
        self.errors = errors
        message = "; ".join(f"{field}: {', '.join(msgs)}" for field, msgs in errors.items())
        super().__init__(message)


class NotFound(CinemaRankError):
    pass


class LikeInFlight(CinemaRankError):
    """A like toggle for the same review and user is still running."""

    def __init__(self, review_key, liker_id: str):
        self.review_key = review_key
        self.liker_id = liker_id
        super().__init__("A like request for this review is already in progress.")


class TransactionFailed(CinemaRankError):
    """The store could not apply a unit of work, even after retrying."""

    def __init__(self, message: str, attempts: int = 1, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.attempts = attempts
        self.cause = cause
