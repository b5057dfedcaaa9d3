"""Exceptions raised by the recommendation core."""


class RecommendationError(Exception):
    """Base class for recommendation errors."""


class NotFoundError(RecommendationError):
    """A user, book or cached recommendation set does not resolve."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found")


class StoreUnavailableError(RecommendationError):
    """The catalog store query failed."""


class StoreTimeoutError(StoreUnavailableError):
    """The catalog store query exceeded its deadline."""


class CacheWriteError(RecommendationError):
    """A recommendation set could not be persisted to the cache."""


class InsufficientSignalError(RecommendationError):
    """Not enough user signal for a strategy; the caller should fall back.

    This is a recognized degraded-input state, not a failure.
    """
