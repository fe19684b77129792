"""Property-based tests for trace context management."""

import threading
import uuid

from hypothesis import given, strategies as st

from market_feed.utils.trace_context import (
    clear_trace,
    create_trace,
    get_current_trace,
    set_trace,
    traced,
)


class TestTraceContextManagement:
    """Tests for trace context management."""

    @given(num_operations=st.integers(min_value=1, max_value=10))
    def test_each_trace_is_a_fresh_uuid(self, num_operations):
        """Property: every created trace id is a distinct UUID and becomes current."""
        clear_trace()

        seen = set()
        for _ in range(num_operations):
            trace_id = create_trace()
            assert get_current_trace() == trace_id
            uuid.UUID(trace_id)
            seen.add(trace_id)

        assert len(seen) == num_operations
        clear_trace()

    def test_set_and_clear(self):
        """Test that a set trace is current until cleared."""
        set_trace("manual-trace")
        assert get_current_trace() == "manual-trace"

        clear_trace()
        assert get_current_trace() is None

    def test_traced_block_clears_afterwards(self):
        """Test that a traced block clears its trace on exit."""
        clear_trace()

        with traced() as trace_id:
            assert get_current_trace() == trace_id

        assert get_current_trace() is None

    def test_traced_block_clears_on_error(self):
        """Test that a traced block clears its trace when the body raises."""
        clear_trace()

        try:
            with traced():
                raise RuntimeError("pass failed")
        except RuntimeError:
            pass

        assert get_current_trace() is None

    def test_trace_is_not_shared_between_threads(self):
        """Test that a new thread does not inherit the current trace."""
        clear_trace()
        seen = []

        with traced():
            thread = threading.Thread(target=lambda: seen.append(get_current_trace()))
            thread.start()
            thread.join()

        assert seen == [None]
