from datetime import datetime
from typing import Callable

from .. import config
from .cinema_service import CinemaCatalogue
from .favorite_service import FavoriteBook
from .like_service import LikeLedger
from .live_view import ChangeFeed, LiveRankedView
from .review_service import ReviewStore, utcnow
from .stats_service import StatsAggregator
from .transactions import TransactionCoordinator


class Services:
    """Every service of one store, sharing one coordinator and change feed."""

    def __init__(
        self,
        session_factory,
        max_attempts: int = config.TX_MAX_ATTEMPTS,
        retry_delay: float = config.TX_RETRY_DELAY,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.feed = ChangeFeed()
        self.coordinator = TransactionCoordinator(
            session_factory,
            feed=self.feed,
            max_attempts=max_attempts,
            retry_delay=retry_delay,
        )
        self.stats = StatsAggregator(self.coordinator)
        self.reviews = ReviewStore(self.coordinator, self.stats, clock=clock)
        self.likes = LikeLedger(self.coordinator, clock=clock)
        self.live = LiveRankedView(self.reviews, self.likes, self.feed)
        self.cinemas = CinemaCatalogue(self.coordinator)
        self.favorites = FavoriteBook(self.coordinator, clock=clock)
