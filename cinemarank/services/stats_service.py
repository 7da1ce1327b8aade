"""Running review statistics per cinema/tag.

The stats row is never re-derived from the review set. Each review mutation
hands over the review's overall score before and after the change, and the
row moves by exactly that delta inside the mutation's own transaction:

    create: count + 1, sum + new
    update: count,     sum + (new - old)
    delete: count - 1, sum - old   (sum forced to 0 when count reaches 0)

Deltas commute, so concurrent mutations that are serialized by the
transaction retry end at the same count/sum whatever order they commit in.
"""
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from ..models import ReviewStats
from ..schemas import StatsOut
from .transactions import TransactionCoordinator


def average(count: int, sum_overall: float) -> float:
    return 0.0 if count == 0 else sum_overall / count


def apply_delta(
    count: int,
    sum_overall: float,
    old_overall: Optional[float],
    new_overall: Optional[float],
) -> Tuple[int, float, float]:
    """Return (count, sum_overall, avg_overall) after one review change.

    `old_overall` is None for a create, `new_overall` is None for a delete.
    """
    if old_overall is None and new_overall is None:
        return count, sum_overall, average(count, sum_overall)

    if old_overall is None:
        count += 1
        sum_overall += new_overall
    elif new_overall is None:
        count = max(0, count - 1)
        sum_overall -= old_overall
        if count == 0:
            # float residue would otherwise survive an empty review set
            sum_overall = 0.0
    else:
        sum_overall += new_overall - old_overall

    return count, sum_overall, average(count, sum_overall)


def stats_out(subject_id: str, category_tag: str, row: Optional[ReviewStats]) -> StatsOut:
    if row is None:
        return StatsOut(subject_id=subject_id, category_tag=category_tag)
    count = int(row.count or 0)
    sum_overall = float(row.sum_overall or 0.0)
    return StatsOut(
        subject_id=subject_id,
        category_tag=category_tag,
        count=count,
        sum_overall=sum_overall,
        avg_overall=average(count, sum_overall),
        updated_at=row.updated_at,
    )


class StatsAggregator:
    def __init__(self, coordinator: TransactionCoordinator):
        self.coordinator = coordinator

    def read_snapshot(self, db: Session, subject_id: str, category_tag: str) -> ReviewStats:
        """Load the stats row for update, staging an empty one if absent."""
        row = db.get(ReviewStats, (subject_id, category_tag))
        if row is None:
            row = ReviewStats(
                subject_id=subject_id,
                category_tag=category_tag,
                count=0,
                sum_overall=0.0,
                avg_overall=0.0,
            )
            db.add(row)
        return row

    def apply(
        self,
        row: ReviewStats,
        old_overall: Optional[float],
        new_overall: Optional[float],
        now: datetime,
    ) -> ReviewStats:
        """Move a loaded stats row by one review change. Caller commits."""
        count, sum_overall, avg = apply_delta(
            int(row.count or 0),
            float(row.sum_overall or 0.0),
            old_overall,
            new_overall,
        )
        row.count = count
        row.sum_overall = sum_overall
        row.avg_overall = avg
        row.updated_at = now
        return row

    def get_stats(self, subject_id: str, category_tag: str) -> StatsOut:
        return self.coordinator.read(
            lambda db: stats_out(subject_id, category_tag, db.get(ReviewStats, (subject_id, category_tag))),
            label="stats",
        )
