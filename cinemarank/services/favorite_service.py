from typing import Callable, List
from datetime import datetime

from sqlalchemy.orm import Session

from ..models import Cinema, Favorite
from ..schemas import CinemaOut, FavoriteState
from ..utils.logging import get_logger
from .cinema_service import cinema_out
from .review_service import utcnow
from .transactions import TransactionCoordinator

logger = get_logger(__name__)


class FavoriteBook:
    """Bookmarked cinemas per viewer; a row's existence is the bookmark."""

    def __init__(self, coordinator: TransactionCoordinator, clock: Callable[[], datetime] = utcnow):
        self.coordinator = coordinator
        self.clock = clock

    def toggle(self, viewer_id: str, cinema_id: str) -> FavoriteState:
        def work(db: Session) -> FavoriteState:
            row = db.get(Favorite, (viewer_id, cinema_id))
            if row is not None:
                db.delete(row)
                return FavoriteState(cinema_id=cinema_id, favorite=False)
            db.add(Favorite(viewer_id=viewer_id, cinema_id=cinema_id, created_at=self.clock()))
            return FavoriteState(cinema_id=cinema_id, favorite=True)

        state = self.coordinator.run_atomically(work, label="toggle_favorite")
        logger.info("favorite_toggled", viewer_id=viewer_id, cinema_id=cinema_id, favorite=state.favorite)
        return state

    def remove(self, viewer_id: str, cinema_id: str) -> bool:
        def work(db: Session) -> bool:
            row = db.get(Favorite, (viewer_id, cinema_id))
            if row is None:
                return False
            db.delete(row)
            return True

        return self.coordinator.run_atomically(work, label="remove_favorite")

    def is_favorite(self, viewer_id: str, cinema_id: str) -> bool:
        return self.coordinator.read(
            lambda db: db.get(Favorite, (viewer_id, cinema_id)) is not None,
            label="is_favorite",
        )

    def list_favorites(self, viewer_id: str) -> List[CinemaOut]:
        """Bookmarked cinemas, oldest bookmark first; vanished cinemas are skipped."""
        def fn(db: Session):
            rows = (
                db.query(Cinema)
                .join(Favorite, Favorite.cinema_id == Cinema.id)
                .filter(Favorite.viewer_id == viewer_id)
                .order_by(Favorite.created_at.asc(), Cinema.id.asc())
                .all()
            )
            return [cinema_out(r) for r in rows]

        return self.coordinator.read(fn, label="list_favorites")
