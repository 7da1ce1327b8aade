import math
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional, Union

from sqlalchemy.orm import Session

from .. import config
from ..exceptions import ValidationError
from ..models import Review, ReviewLike
from ..schemas import ReviewOrder, ReviewOut, Scores
from ..utils.logging import get_logger
from ..utils.text import clean_text
from .stats_service import StatsAggregator
from .transactions import TransactionCoordinator, mark_changed

logger = get_logger(__name__)

SCORE_FIELDS = ("screen", "picture", "sound", "seat")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_tag(category_tag: Optional[str]) -> str:
    if category_tag is None or not str(category_tag).strip():
        raise ValidationError({"category_tag": ["Select a screen tag first"]})
    return str(category_tag)


def validate_scores(scores: Union[Scores, Mapping]) -> Scores:
    """Check every sub-score is a number in [0, 5] on a 0.5 grid."""
    raw = scores.model_dump() if isinstance(scores, Scores) else dict(scores)
    errors: Dict[str, List[str]] = {}
    for field in SCORE_FIELDS:
        value = raw.get(field)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors[field] = ["Score must be a number"]
        # ints of any size compare exactly against the bounds below
        elif isinstance(value, float) and not math.isfinite(value):
            errors[field] = ["Score must be a number"]
        elif value < config.SCORE_MIN or value > config.SCORE_MAX:
            errors[field] = [f"Score must be between {config.SCORE_MIN:g} and {config.SCORE_MAX:g}"]
        elif not float(value / config.SCORE_STEP).is_integer():
            errors[field] = [f"Score must be a multiple of {config.SCORE_STEP:g}"]
    if errors:
        raise ValidationError(errors)
    return Scores(**{f: float(raw[f]) for f in SCORE_FIELDS})


def stored_overall(row: Review) -> float:
    # rows written before `overall` was stored fall back to their sub-scores
    if row.overall is not None:
        return float(row.overall)
    return sum(float(getattr(row, f) or 0.0) for f in SCORE_FIELDS) / 4


def review_out(row: Review) -> ReviewOut:
    return ReviewOut(
        subject_id=row.subject_id,
        category_tag=row.category_tag,
        author_id=row.author_id,
        display_name=row.display_name or "",
        screen=float(row.screen or 0.0),
        picture=float(row.picture or 0.0),
        sound=float(row.sound or 0.0),
        seat=float(row.seat or 0.0),
        overall=stored_overall(row),
        comment=row.comment or "",
        like_count=max(0, int(row.like_count or 0)),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def query_reviews(db: Session, subject_id: str, category_tag: str, order: ReviewOrder) -> List[Review]:
    q = db.query(Review).filter_by(subject_id=subject_id, category_tag=category_tag)
    if ReviewOrder(order) == ReviewOrder.POPULARITY:
        q = q.order_by(Review.like_count.desc(), Review.updated_at.desc(), Review.author_id.asc())
    else:
        q = q.order_by(Review.updated_at.desc(), Review.author_id.asc())
    return q.all()


class ReviewStore:
    """Per-author reviews of a cinema/tag, kept in step with their stats row."""

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        stats: Optional[StatsAggregator] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.coordinator = coordinator
        self.stats = stats or StatsAggregator(coordinator)
        self.clock = clock

    def upsert_review(
        self,
        subject_id: str,
        category_tag: str,
        author_id: str,
        scores: Union[Scores, Mapping],
        comment: str = "",
        display_name: str = "",
    ) -> ReviewOut:
        """Create the author's review, or update it if one already exists."""
        category_tag = validate_tag(category_tag)
        scores = validate_scores(scores)
        new_overall = scores.overall()
        comment = clean_text(comment)
        display_name = clean_text(display_name)

        def work(db: Session):
            now = self.clock()
            row = db.get(Review, (subject_id, category_tag, author_id))
            stats_row = self.stats.read_snapshot(db, subject_id, category_tag)
            if row is None:
                old_overall = None
                row = Review(
                    subject_id=subject_id,
                    category_tag=category_tag,
                    author_id=author_id,
                    like_count=0,
                    created_at=now,
                )
                db.add(row)
            else:
                old_overall = stored_overall(row)

            row.display_name = display_name
            row.screen = scores.screen
            row.picture = scores.picture
            row.sound = scores.sound
            row.seat = scores.seat
            row.overall = new_overall
            row.comment = comment
            row.updated_at = now

            self.stats.apply(stats_row, old_overall, new_overall, now)
            mark_changed(db, subject_id, category_tag)
            return review_out(row), old_overall is None

        review, created = self.coordinator.run_atomically(work, label="upsert_review")
        logger.info(
            "review_upserted",
            subject_id=subject_id,
            category_tag=category_tag,
            author_id=author_id,
            created=created,
            overall=review.overall,
        )
        return review

    def delete_review(self, subject_id: str, category_tag: str, author_id: str) -> bool:
        """Delete the author's review. Deleting a missing review is a no-op."""
        category_tag = validate_tag(category_tag)

        def work(db: Session) -> bool:
            row = db.get(Review, (subject_id, category_tag, author_id))
            if row is None:
                return False
            old_overall = stored_overall(row)
            stats_row = self.stats.read_snapshot(db, subject_id, category_tag)

            db.query(ReviewLike).filter_by(
                subject_id=subject_id,
                category_tag=category_tag,
                author_id=author_id,
            ).delete(synchronize_session=False)
            db.delete(row)

            self.stats.apply(stats_row, old_overall, None, self.clock())
            mark_changed(db, subject_id, category_tag)
            return True

        deleted = self.coordinator.run_atomically(work, label="delete_review")
        logger.info(
            "review_deleted" if deleted else "review_delete_noop",
            subject_id=subject_id,
            category_tag=category_tag,
            author_id=author_id,
        )
        return deleted

    def get_review(self, subject_id: str, category_tag: str, author_id: str) -> Optional[ReviewOut]:
        def fn(db: Session):
            row = db.get(Review, (subject_id, category_tag, author_id))
            return review_out(row) if row is not None else None

        return self.coordinator.read(fn, label="get_review")

    def list_reviews(
        self,
        subject_id: str,
        category_tag: str,
        order: ReviewOrder = ReviewOrder.RECENCY,
    ) -> List[ReviewOut]:
        return self.coordinator.read(
            lambda db: [review_out(r) for r in query_reviews(db, subject_id, category_tag, order)],
            label="list_reviews",
        )
