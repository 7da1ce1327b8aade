"""State of the "my review" editor for one cinema/tag screen.

The editor is a plain value: every user action maps the current state to a
new one and nothing is mutated in place, so a state can be serialized,
compared in tests, or replayed. A client screen keeps one per open cinema/tag
and feeds it its own review from each live-view delivery via `sync_with_snapshot`.
"""
from dataclasses import asdict, dataclass, replace
from typing import Optional

from .exceptions import CinemaRankError
from .schemas import ReviewOut, Scores
from .services.review_service import SCORE_FIELDS, ReviewStore


@dataclass(frozen=True)
class ReviewEditorState:
    screen: float = 0.0
    picture: float = 0.0
    sound: float = 0.0
    seat: float = 0.0
    comment: str = ""
    open: bool = True
    touched: bool = False
    saving: bool = False
    error: Optional[str] = None

    def scores(self) -> Scores:
        return Scores(screen=self.screen, picture=self.picture, sound=self.sound, seat=self.seat)

    def overall(self) -> float:
        return self.scores().overall()

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ReviewEditorState":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


def set_score(state: ReviewEditorState, field: str, value: float) -> ReviewEditorState:
    if field not in SCORE_FIELDS:
        raise ValueError(f"Unknown score field {field!r}")
    return replace(state, **{field: float(value)})


def set_comment(state: ReviewEditorState, comment: str) -> ReviewEditorState:
    return replace(state, comment=comment)


def toggle_open(state: ReviewEditorState) -> ReviewEditorState:
    return replace(state, open=not state.open, touched=True)


def sync_with_snapshot(state: ReviewEditorState, mine: Optional[ReviewOut]) -> ReviewEditorState:
    """Load the viewer's own review from a fresh list delivery.

    Until the user has opened or closed the editor themselves, it starts
    collapsed when a review exists and expanded when there is none.
    """
    if mine is not None:
        state = replace(
            state,
            screen=mine.screen,
            picture=mine.picture,
            sound=mine.sound,
            seat=mine.seat,
            comment=mine.comment,
        )
        return state if state.touched else replace(state, open=False)
    state = replace(state, screen=0.0, picture=0.0, sound=0.0, seat=0.0, comment="")
    return state if state.touched else replace(state, open=True)


def begin_save(state: ReviewEditorState) -> ReviewEditorState:
    return replace(state, saving=True, error=None)


def save_succeeded(state: ReviewEditorState) -> ReviewEditorState:
    return replace(state, saving=False, touched=True, open=False)


def save_failed(state: ReviewEditorState, message: str) -> ReviewEditorState:
    return replace(state, saving=False, error=message)


def delete_succeeded(state: ReviewEditorState) -> ReviewEditorState:
    return ReviewEditorState(open=True, touched=True)


def save(
    state: ReviewEditorState,
    store: ReviewStore,
    subject_id: str,
    category_tag: str,
    author_id: str,
    display_name: str = "",
) -> ReviewEditorState:
    """Submit the editor contents; failures end up in `error`, not raised."""
    if state.saving:
        return state
    state = begin_save(state)
    try:
        store.upsert_review(subject_id, category_tag, author_id, state.scores(), state.comment, display_name)
    except CinemaRankError as exc:
        return save_failed(state, exc.message)
    return save_succeeded(state)


def delete(
    state: ReviewEditorState,
    store: ReviewStore,
    subject_id: str,
    category_tag: str,
    author_id: str,
) -> ReviewEditorState:
    if state.saving:
        return state
    state = begin_save(state)
    try:
        store.delete_review(subject_id, category_tag, author_id)
    except CinemaRankError as exc:
        return save_failed(state, exc.message)
    return delete_succeeded(state)
