"""Tests for the running-aggregate delta math."""

import pytest

from cinemarank.services.stats_service import apply_delta, average


class TestApplyDelta:
    def test_create_adds_one_review(self):
        assert apply_delta(0, 0.0, None, 5.0) == (1, 5.0, 5.0)

    def test_update_moves_sum_only(self):
        count, total, avg = apply_delta(2, 5.0, 5.0, 4.0)
        assert count == 2
        assert total == pytest.approx(4.0)
        assert avg == pytest.approx(2.0)

    def test_delete_removes_one_review(self):
        count, total, avg = apply_delta(2, 4.0, 0.0, None)
        assert (count, total, avg) == (1, 4.0, 4.0)

    def test_delete_of_last_review_resets_sum(self):
        count, total, avg = apply_delta(1, 3.7000000000000006, 3.7, None)
        assert (count, total, avg) == (0, 0.0, 0.0)

    def test_count_never_goes_negative(self):
        count, total, avg = apply_delta(0, 0.0, 2.5, None)
        assert count == 0
        assert total == 0.0
        assert avg == 0.0

    def test_no_change_when_nothing_before_or_after(self):
        assert apply_delta(3, 9.0, None, None) == (3, 9.0, 3.0)


class TestAggregateLifecycle:
    def test_create_create_edit_delete(self):
        # A rates 5s, B rates 0s, A edits to 4s, B deletes
        state = apply_delta(0, 0.0, None, 5.0)
        assert state == (1, 5.0, 5.0)
        state = apply_delta(state[0], state[1], None, 0.0)
        assert state == (2, 5.0, 2.5)
        state = apply_delta(state[0], state[1], 5.0, 4.0)
        assert state == (2, 4.0, 2.0)
        state = apply_delta(state[0], state[1], 0.0, None)
        assert state == (1, 4.0, 4.0)


@pytest.mark.parametrize("count,total,expected", [(0, 0.0, 0.0), (0, 3.0, 0.0), (4, 10.0, 2.5)])
def test_average(count, total, expected):
    assert average(count, total) == expected
