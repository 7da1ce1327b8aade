"""Like counters backed by per-(review, user) like records.

A review's `like_count` is only ever changed together with the like record
that justifies the change, in one transaction that first reads both. The
record decides the direction of a toggle; callers never say "like" or
"unlike" themselves, so a stale client cannot double count.
"""
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional, Tuple

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from ..exceptions import LikeInFlight
from ..models import Review, ReviewLike
from ..schemas import LikeState, ReviewOut
from ..utils.logging import get_logger
from .review_service import utcnow, validate_tag
from .transactions import TransactionCoordinator, mark_changed

logger = get_logger(__name__)

ReviewKey = Tuple[str, str, str]


class InFlightGuard:
    """Rejects a second toggle for the same review and user while one runs."""

    def __init__(self):
        self._lock = threading.Lock()
        self._active = set()

    @contextmanager
    def hold(self, review_key: ReviewKey, liker_id: str):
        key = (review_key, liker_id)
        with self._lock:
            if key in self._active:
                raise LikeInFlight(review_key, liker_id)
            self._active.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._active.discard(key)

    def is_busy(self, review_key: ReviewKey, liker_id: str) -> bool:
        with self._lock:
            return (review_key, liker_id) in self._active


class LikeLedger:
    def __init__(
        self,
        coordinator: TransactionCoordinator,
        guard: Optional[InFlightGuard] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.coordinator = coordinator
        self.guard = guard or InFlightGuard()
        self.clock = clock

    def toggle_like(self, subject_id: str, category_tag: str, author_id: str, liker_id: str) -> LikeState:
        category_tag = validate_tag(category_tag)
        review_key = (subject_id, category_tag, author_id)
        with self.guard.hold(review_key, liker_id):
            state = self.coordinator.run_atomically(
                lambda db: self.toggle_in(db, review_key, liker_id),
                label="toggle_like",
            )
        logger.info(
            "like_toggled",
            subject_id=subject_id,
            category_tag=category_tag,
            author_id=author_id,
            liker_id=liker_id,
            liked=state.liked,
            like_count=state.like_count,
        )
        return state

    def toggle_in(self, db: Session, review_key: ReviewKey, liker_id: str) -> LikeState:
        """Transaction body of a toggle; the caller owns the commit."""
        like = db.get(ReviewLike, review_key + (liker_id,))
        review = db.get(Review, review_key)

        if review is None:
            if like is not None:
                db.delete(like)
            return LikeState(liked=False, like_count=0)

        current = max(0, int(review.like_count or 0))
        if like is not None:
            db.delete(like)
            review.like_count = max(0, current - 1)
            liked = False
        else:
            subject_id, category_tag, author_id = review_key
            db.add(
                ReviewLike(
                    subject_id=subject_id,
                    category_tag=category_tag,
                    author_id=author_id,
                    liker_id=liker_id,
                    created_at=self.clock(),
                )
            )
            review.like_count = current + 1
            liked = True

        # always write the review row so its version check guards the read above
        flag_modified(review, "like_count")
        mark_changed(db, review_key[0], review_key[1])
        return LikeState(liked=liked, like_count=review.like_count)

    def has_liked(self, subject_id: str, category_tag: str, author_id: str, liker_id: str) -> bool:
        return self.coordinator.read(
            lambda db: db.get(ReviewLike, (subject_id, category_tag, author_id, liker_id)) is not None,
            label="has_liked",
        )

    def liked_map(self, reviews: Iterable[ReviewOut], liker_id: str) -> Dict[str, bool]:
        """Which of `reviews` the user has liked, keyed by review author.

        One independent point lookup per review. The answers are not taken
        from the same snapshot as `reviews`, so a like toggled meanwhile can
        show up stale until the next refresh.
        """
        return {
            r.author_id: self.has_liked(r.subject_id, r.category_tag, r.author_id, liker_id)
            for r in reviews
        }
