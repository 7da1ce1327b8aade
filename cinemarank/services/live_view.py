"""Live, ordered review lists for one cinema/tag.

A `Subscription` delivers the whole ordered review list on subscribe and
again after every committed change to that cinema/tag. Each refresh is two
separate reads:

1. the ordered list, delivered right away together with the previous
   "liked by me" answers;
2. one point lookup per review for the viewer's like record, delivered as a
   second state once all answers are in.

The two reads are not atomic. A like toggled between them can show a stale
like button until the next refresh; `like_count` itself is always exact.
"""
import queue
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from ..exceptions import CinemaRankError, ValidationError
from ..schemas import ReviewOrder, ReviewOut
from ..utils.logging import get_logger
from .like_service import LikeLedger
from .review_service import ReviewStore, validate_tag

logger = get_logger(__name__)

ViewKey = Tuple[str, str]

_CLOSED = object()


@dataclass(frozen=True)
class RankedViewState:
    """One delivery of a live view."""

    reviews: Tuple[ReviewOut, ...] = ()
    liked: Dict[str, bool] = field(default_factory=dict)
    error: Optional[str] = None
    liked_resolved: bool = False


class ChangeFeed:
    """In-process fan-out of "this cinema/tag changed" notifications."""

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: Dict[ViewKey, List[Callable[[ViewKey], None]]] = {}

    def subscribe(self, key: ViewKey, callback: Callable[[ViewKey], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.setdefault(key, []).append(callback)

        def unsubscribe():
            with self._lock:
                callbacks = self._listeners.get(key, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._listeners.pop(key, None)

        return unsubscribe

    def publish(self, key: ViewKey) -> None:
        with self._lock:
            callbacks = list(self._listeners.get(key, ()))
        for callback in callbacks:
            try:
                callback(key)
            except Exception:
                # the change is already committed; a broken listener must not fail it
                logger.exception("change_listener_failed", subject_id=key[0], category_tag=key[1])

    def listener_count(self, key: ViewKey) -> int:
        with self._lock:
            return len(self._listeners.get(key, ()))


class Subscription:
    def __init__(
        self,
        view: "LiveRankedView",
        key: ViewKey,
        order: ReviewOrder,
        listener: Optional[Callable[[RankedViewState], None]],
        viewer_id: Optional[str],
    ):
        self.key = key
        self.order = order
        self.viewer_id = viewer_id
        self.state = RankedViewState()
        self._view = view
        self._lock = threading.RLock()
        self._closed = False
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._queue: Optional[queue.Queue] = None
        if listener is None:
            self._queue = queue.Queue()
            listener = self._queue.put
        self._listener = listener

    @property
    def closed(self) -> bool:
        return self._closed

    def _on_change(self, key: ViewKey) -> None:
        self.refresh()

    def _deliver(self, state: RankedViewState) -> None:
        self.state = state
        self._listener(state)

    def refresh(self) -> None:
        """Re-read the list, deliver it, then resolve the viewer's likes."""
        with self._lock:
            if self._closed:
                return
            subject_id, category_tag = self.key
            try:
                reviews = tuple(self._view.reviews.list_reviews(subject_id, category_tag, self.order))
            except CinemaRankError as exc:
                logger.warning(
                    "live_view_refresh_failed",
                    subject_id=subject_id,
                    category_tag=category_tag,
                    error=exc.message,
                )
                self._deliver(RankedViewState(error=exc.message or "Could not load reviews."))
                return

            present = {r.author_id for r in reviews}
            previous = {k: v for k, v in self.state.liked.items() if k in present}
            self._deliver(RankedViewState(reviews=reviews, liked=previous))

            if self.viewer_id is None:
                return
            try:
                liked = self._view.likes.liked_map(reviews, self.viewer_id)
            except CinemaRankError as exc:
                logger.warning("live_view_liked_lookup_failed", viewer_id=self.viewer_id, error=exc.message)
                return
            if self._closed:
                return
            self._deliver(RankedViewState(reviews=reviews, liked=liked, liked_resolved=True))

    def close(self) -> None:
        """Stop delivery. Nothing is delivered once this returns."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._unsubscribe is not None:
                self._unsubscribe()
                self._unsubscribe = None
            if self._queue is not None:
                self._queue.put(_CLOSED)

    def updates(self, heartbeat: Optional[float] = None) -> Iterator[Optional[RankedViewState]]:
        """Yield delivered states until closed.

        With `heartbeat` set, yields None whenever nothing arrived for that
        many seconds so a streaming caller can keep its connection alive.
        """
        if self._queue is None:
            raise RuntimeError("updates() needs a subscription opened without a listener")
        while True:
            try:
                item = self._queue.get(timeout=heartbeat)
            except queue.Empty:
                yield None
                continue
            if item is _CLOSED:
                return
            yield item

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


class LiveRankedView:
    def __init__(self, reviews: ReviewStore, likes: LikeLedger, feed: ChangeFeed):
        self.reviews = reviews
        self.likes = likes
        self.feed = feed

    def subscribe(
        self,
        subject_id: str,
        category_tag: str,
        order=ReviewOrder.RECENCY,
        listener: Optional[Callable[[RankedViewState], None]] = None,
        viewer_id: Optional[str] = None,
    ) -> Subscription:
        category_tag = validate_tag(category_tag)
        try:
            order = ReviewOrder(order)
        except ValueError:
            raise ValidationError({"order": [f"Unknown order {order!r}"]})

        key = (subject_id, category_tag)
        sub = Subscription(self, key, order, listener, viewer_id)
        # register before the first read so no change can slip in between
        sub._unsubscribe = self.feed.subscribe(key, sub._on_change)
        sub.refresh()
        logger.debug("live_view_subscribed", subject_id=subject_id, category_tag=category_tag, order=order.value)
        return sub
