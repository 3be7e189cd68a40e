# src/hopper/engine/skip.py
"""Skip policies: which record-level failures a step tolerates.

A policy is consulted once per failed record, after retries are exhausted,
with the number of skips the step execution has already counted. Returning
True skips the record; returning False (or raising SkipLimitExceededError)
fails the step.

ChunkProcessingError, JobRepositoryError and StatusTransitionError are
infrastructure failures and are never offered to a policy.
"""

from collections.abc import Callable, Iterable

from hopper.contracts.errors import SkipLimitExceededError


class AlwaysSkipPolicy:
    """Skip every failed record."""

    def should_skip(self, error: BaseException, skip_count: int) -> bool:
        return True


class NeverSkipPolicy:
    """Fail the step on the first failed record (the default)."""

    def should_skip(self, error: BaseException, skip_count: int) -> bool:
        return False


class LimitCheckingSkipPolicy:
    """Skip errors of the skippable types until the limit is used up.

    Matching is by isinstance. A type listed in ``non_skippable`` wins over a
    broader skippable base class (e.g. skip ValueError but not UnicodeError).

    Example:
        policy = LimitCheckingSkipPolicy(
            skip_limit=10,
            skippable=[RecordRejectedError, ItemReadError],
        )
    """

    def __init__(
        self,
        skip_limit: int,
        skippable: Iterable[type[BaseException]] = (Exception,),
        non_skippable: Iterable[type[BaseException]] = (),
    ) -> None:
        if skip_limit < 0:
            raise ValueError(f"skip_limit must be >= 0, got {skip_limit}")
        self.skip_limit = skip_limit
        self.skippable = tuple(skippable)
        self.non_skippable = tuple(non_skippable)

    def is_skippable(self, error: BaseException) -> bool:
        if self.non_skippable and isinstance(error, self.non_skippable):
            return False
        return isinstance(error, self.skippable)

    def should_skip(self, error: BaseException, skip_count: int) -> bool:
        if not self.is_skippable(error):
            return False
        if skip_count >= self.skip_limit:
            raise SkipLimitExceededError(self.skip_limit, error)
        return True


class FunctionSkipPolicy:
    """Adapt a plain ``(error, skip_count) -> bool`` callable."""

    def __init__(self, fn: Callable[[BaseException, int], bool]) -> None:
        self._fn = fn

    def should_skip(self, error: BaseException, skip_count: int) -> bool:
        return self._fn(error, skip_count)
