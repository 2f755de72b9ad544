"""
Unit tests for RollingFrameHistory and AnalysisCache
"""
import numpy as np
import pytest
from hypothesis import given, settings, strategies as st

from liveness_engine.utils.rolling_history import (
    AnalysisCache,
    RollingFrameHistory,
    freeze,
    should_recompute,
)


class TestRollingFrameHistory:
    """Test the bounded FIFO"""

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            RollingFrameHistory(0)

    def test_recent_returns_oldest_first(self):
        history = RollingFrameHistory(5)
        for i in range(4):
            history.append(i)

        assert history.recent(2) == [2, 3]
        assert history.recent(10) == [0, 1, 2, 3]
        assert history.recent(0) == []
        assert history.latest == 3

    def test_clear(self):
        history = RollingFrameHistory(3)
        history.append(1)
        history.clear()

        assert len(history) == 0
        assert history.latest is None

    @given(capacity=st.integers(min_value=1, max_value=40))
    @settings(max_examples=50, deadline=None)
    def test_property_keeps_last_n_in_order(self, capacity):
        """After N + 5 inserts a history of capacity N holds exactly the last N, in order."""
        history = RollingFrameHistory(capacity)
        inserted = list(range(capacity + 5))
        for value in inserted:
            history.append(value)

        assert len(history) == capacity
        assert list(history) == inserted[-capacity:]

    @given(values=st.lists(st.integers(), max_size=60), capacity=st.integers(min_value=1, max_value=30))
    @settings(max_examples=100, deadline=None)
    def test_property_length_never_exceeds_capacity(self, values, capacity):
        history = RollingFrameHistory(capacity)
        for value in values:
            history.append(value)
            assert len(history) <= capacity


class TestFreeze:
    def test_frozen_copy_is_read_only(self):
        source = np.arange(4, dtype=np.float32)
        frozen = freeze(source)
        source[0] = 10

        assert frozen[0] == 0
        with pytest.raises(ValueError):
            frozen[1] = 5


class TestAnalysisCache:
    """Test the frame-skip cache"""

    def test_should_recompute_without_cache(self):
        assert should_recompute(1, 3, has_cached=False)

    def test_should_recompute_on_interval(self):
        assert should_recompute(3, 3, has_cached=True)
        assert not should_recompute(4, 3, has_cached=True)

    def test_interval_of_one_always_recomputes(self):
        assert all(should_recompute(n, 1, has_cached=True) for n in range(1, 10))

    def test_tick_pattern_every_second_cycle(self):
        cache = AnalysisCache(skip_interval=2)
        decisions = []
        for _ in range(6):
            fresh = cache.tick()
            decisions.append(fresh)
            if fresh:
                cache.store("result")

        # first cycle computes because nothing is cached yet
        assert decisions == [True, True, False, True, False, True]

    def test_store_returns_value_and_reset_clears(self):
        cache = AnalysisCache(skip_interval=3)
        assert cache.store(42) == 42
        cache.tick()
        cache.reset()

        assert cache.value is None
        assert cache.counter == 0
