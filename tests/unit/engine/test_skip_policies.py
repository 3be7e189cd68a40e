# tests/unit/engine/test_skip_policies.py
"""Tests for skip policies."""

from __future__ import annotations

import pytest

from hopper.contracts.errors import ItemReadError, RecordRejectedError, SkipLimitExceededError
from hopper.engine.skip import AlwaysSkipPolicy, FunctionSkipPolicy, LimitCheckingSkipPolicy, NeverSkipPolicy


class TestLimitCheckingSkipPolicy:
    def test_skips_until_limit(self) -> None:
        policy = LimitCheckingSkipPolicy(skip_limit=2, skippable=[RecordRejectedError])
        assert policy.should_skip(RecordRejectedError("a"), 0)
        assert policy.should_skip(RecordRejectedError("b"), 1)

    def test_limit_exceeded_raises(self) -> None:
        policy = LimitCheckingSkipPolicy(skip_limit=1, skippable=[RecordRejectedError])
        with pytest.raises(SkipLimitExceededError, match="Skip limit of 1 exceeded"):
            policy.should_skip(RecordRejectedError("c"), 1)

    def test_zero_limit_never_skips(self) -> None:
        policy = LimitCheckingSkipPolicy(skip_limit=0)
        with pytest.raises(SkipLimitExceededError):
            policy.should_skip(ValueError("x"), 0)

    def test_non_skippable_type_fails_without_consuming_limit(self) -> None:
        policy = LimitCheckingSkipPolicy(skip_limit=5, skippable=[ItemReadError])
        assert not policy.should_skip(RecordRejectedError("no"), 0)

    def test_non_skippable_wins_over_skippable_base(self) -> None:
        policy = LimitCheckingSkipPolicy(skip_limit=5, skippable=[ValueError], non_skippable=[UnicodeError])
        assert policy.should_skip(ValueError("ok"), 0)
        assert not policy.should_skip(UnicodeDecodeError("utf-8", b"\xff", 0, 1, "bad"), 0)

    def test_negative_limit_rejected(self) -> None:
        with pytest.raises(ValueError):
            LimitCheckingSkipPolicy(skip_limit=-1)


class TestSimplePolicies:
    def test_always_and_never(self) -> None:
        assert AlwaysSkipPolicy().should_skip(RuntimeError(), 1000)
        assert not NeverSkipPolicy().should_skip(RuntimeError(), 0)

    def test_function_policy(self) -> None:
        policy = FunctionSkipPolicy(lambda error, count: isinstance(error, KeyError) and count < 1)
        assert policy.should_skip(KeyError("a"), 0)
        assert not policy.should_skip(KeyError("a"), 1)
