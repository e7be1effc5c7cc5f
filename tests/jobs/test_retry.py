"""Tests for jobspine.jobs.retry — backoff strategies."""

from __future__ import annotations

import pytest

from jobspine.core.settings import SchedulerSettings
from jobspine.jobs.retry import (
    ConstantBackoff,
    ExponentialBackoff,
    LinearBackoff,
    strategy_from_settings,
)


class TestStrategies:
    def test_constant_default_is_five_minutes(self):
        strategy = ConstantBackoff()
        assert [strategy.next_delay(n) for n in range(3)] == [300.0, 300.0, 300.0]

    def test_linear_capped(self):
        strategy = LinearBackoff(base_delay=10, increment=5, max_delay=22)
        assert [strategy.next_delay(n) for n in range(4)] == [10, 15, 20, 22]

    def test_exponential(self):
        strategy = ExponentialBackoff(base_delay=30, max_delay=600)
        assert [strategy.next_delay(n) for n in range(6)] == [30, 60, 120, 240, 480, 600]

    def test_exponential_jitter_stays_positive(self):
        strategy = ExponentialBackoff(base_delay=10, jitter=True, jitter_range=0.5)
        for attempt in range(5):
            assert strategy.next_delay(attempt) > 0

    def test_invalid_jitter_range(self):
        with pytest.raises(ValueError):
            ExponentialBackoff(jitter_range=1.0)

    def test_should_retry_ceiling(self):
        strategy = ConstantBackoff()
        assert strategy.should_retry(0, 3)
        assert strategy.should_retry(2, 3)
        assert not strategy.should_retry(3, 3)
        assert not strategy.should_retry(0, 0)


class TestFromSettings:
    @pytest.mark.parametrize(
        ("backoff", "expected"),
        [("constant", ConstantBackoff), ("linear", LinearBackoff), ("exponential", ExponentialBackoff)],
    )
    def test_selects_strategy(self, backoff, expected):
        settings = SchedulerSettings(retry_backoff=backoff, retry_delay_seconds=5)
        strategy = strategy_from_settings(settings)
        assert isinstance(strategy, expected)
        assert strategy.next_delay(0) == 5
