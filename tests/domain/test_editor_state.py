"""Tests for the review editor's pure transitions."""

import pytest

from cinemarank.editor import (
    ReviewEditorState,
    begin_save,
    delete_succeeded,
    save_failed,
    save_succeeded,
    set_comment,
    set_score,
    sync_with_snapshot,
    toggle_open,
)
from cinemarank.schemas import ReviewOut


def _mine(**overrides):
    data = dict(
        subject_id="cgv-yongsan",
        category_tag="IMAX",
        author_id="alice",
        screen=4.0,
        picture=4.5,
        sound=5.0,
        seat=3.5,
        overall=4.25,
        comment="Great sound",
    )
    data.update(overrides)
    return ReviewOut(**data)


class TestEditing:
    def test_fresh_editor_is_open_and_empty(self):
        state = ReviewEditorState()
        assert state.open
        assert state.overall() == 0.0

    def test_set_score_returns_new_state(self):
        before = ReviewEditorState()
        after = set_score(before, "sound", 4.5)
        assert after.sound == 4.5
        assert before.sound == 0.0

    def test_unknown_score_field_rejected(self):
        with pytest.raises(ValueError):
            set_score(ReviewEditorState(), "popcorn", 5)

    def test_overall_is_mean_of_sub_scores(self):
        state = ReviewEditorState(screen=5, picture=4, sound=3, seat=2)
        assert state.overall() == 3.5

    def test_set_comment(self):
        assert set_comment(ReviewEditorState(), "nice").comment == "nice"

    def test_toggle_open_marks_touched(self):
        state = toggle_open(ReviewEditorState())
        assert not state.open
        assert state.touched


class TestSnapshotSync:
    def test_existing_review_loads_and_collapses(self):
        state = sync_with_snapshot(ReviewEditorState(), _mine())
        assert (state.screen, state.picture, state.sound, state.seat) == (4.0, 4.5, 5.0, 3.5)
        assert state.comment == "Great sound"
        assert not state.open

    def test_no_review_clears_and_expands(self):
        state = sync_with_snapshot(ReviewEditorState(screen=3, open=False), None)
        assert state.screen == 0.0
        assert state.open

    def test_user_choice_of_open_is_kept(self):
        state = toggle_open(toggle_open(ReviewEditorState()))
        assert state.open and state.touched
        assert sync_with_snapshot(state, _mine()).open


class TestSaveLifecycle:
    def test_begin_save_clears_error(self):
        state = begin_save(ReviewEditorState(error="old"))
        assert state.saving
        assert state.error is None

    def test_save_succeeded_collapses(self):
        state = save_succeeded(begin_save(ReviewEditorState()))
        assert not state.saving
        assert not state.open

    def test_save_failed_keeps_form(self):
        state = save_failed(begin_save(ReviewEditorState(screen=2.0)), "nope")
        assert state.error == "nope"
        assert state.screen == 2.0
        assert not state.saving

    def test_delete_succeeded_resets_form(self):
        state = delete_succeeded(ReviewEditorState(screen=5, comment="x", open=False))
        assert state == ReviewEditorState(open=True, touched=True)


def test_dict_round_trip_ignores_unknown_keys():
    state = ReviewEditorState(screen=4.5, comment="ok", error="e")
    data = state.to_dict()
    data["legacy"] = True
    assert ReviewEditorState.from_dict(data) == state
