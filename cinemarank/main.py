"""CinemaRank HTTP API.

Usage:
    pip install "cinemarank[serve]"
    uvicorn cinemarank.main:app --host 0.0.0.0 --port 8000

The acting user is taken from the `X-User-Id` header, set by the
authenticating gateway in front of this service.
"""
from contextlib import asynccontextmanager
from typing import List, Optional
import csv
import io
import json

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from . import config
from .database import SessionLocal, engine, init_db
from .exceptions import CinemaRankError, LikeInFlight, NotFound, TransactionFailed, ValidationError
from .schemas import (
    CinemaIn,
    CinemaOut,
    CinemaPage,
    FavoriteState,
    LikeState,
    RankItem,
    ReviewIn,
    ReviewOrder,
    ReviewOut,
    ReviewPage,
    Scores,
    StatsOut,
)
from .services.container import Services
from .services.live_view import RankedViewState
from .utils.logging import add_context, clear_context, configure_logging, get_logger
from .utils.paging import paginate

logger = get_logger(__name__)

STREAM_HEARTBEAT_SECONDS = 15.0

router = APIRouter()


def get_services(request: Request) -> Services:
    return request.app.state.services


def current_user(x_user_id: str = Header(..., min_length=1)) -> str:
    return x_user_id


def optional_user(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    return x_user_id or None


# ---------------------------------------------------------------------------
# Cinemas
# ---------------------------------------------------------------------------
@router.post("/cinemas", status_code=201, response_model=CinemaOut)
def add_cinema(body: CinemaIn, services: Services = Depends(get_services)):
    return services.cinemas.add_cinema(body)


@router.get("/cinemas", response_model=CinemaPage)
def list_cinemas(
    brand: Optional[str] = None,
    region: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=config.CINEMA_PAGE_SIZE, ge=1, le=100),
    services: Services = Depends(get_services),
):
    cinemas = services.cinemas.list_cinemas(brand=brand, region=region)
    items, page, pages = paginate(cinemas, page, page_size)
    return CinemaPage(page=page, total_pages=pages, total=len(cinemas), cinemas=items)


@router.get("/cinemas/nearby", response_model=CinemaPage)
def nearby_cinemas(
    lat: float,
    lng: float,
    radius_m: int = Query(default=config.NEARBY_RADIUS_M, gt=0),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=config.NEARBY_PAGE_SIZE, ge=1, le=100),
    services: Services = Depends(get_services),
):
    cinemas = services.cinemas.nearby(lat, lng, radius_m)
    items, page, pages = paginate(cinemas, page, page_size)
    return CinemaPage(page=page, total_pages=pages, total=len(cinemas), cinemas=items)


@router.get("/cinemas/{cinema_id}", response_model=CinemaOut)
def get_cinema(cinema_id: str, services: Services = Depends(get_services)):
    return services.cinemas.get_cinema(cinema_id)


@router.get("/ranking", response_model=List[RankItem])
def ranking(limit: int = Query(default=config.RANKING_LIMIT, ge=1, le=100), services: Services = Depends(get_services)):
    return services.cinemas.ranking(limit)


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------
@router.get("/cinemas/{cinema_id}/tags/{tag}/stats", response_model=StatsOut)
def tag_stats(cinema_id: str, tag: str, services: Services = Depends(get_services)):
    services.cinemas.require_tag(cinema_id, tag)
    return services.stats.get_stats(cinema_id, tag)


@router.get("/cinemas/{cinema_id}/tags/{tag}/reviews", response_model=ReviewPage)
def list_reviews(
    cinema_id: str,
    tag: str,
    order: ReviewOrder = ReviewOrder.RECENCY,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=config.REVIEW_PAGE_SIZE, ge=1, le=100),
    viewer_id: Optional[str] = Depends(optional_user),
    services: Services = Depends(get_services),
):
    services.cinemas.require_tag(cinema_id, tag)
    reviews = services.reviews.list_reviews(cinema_id, tag, order)
    items, page, pages = paginate(reviews, page, page_size)
    liked = services.likes.liked_map(items, viewer_id) if viewer_id else {}
    return ReviewPage(
        subject_id=cinema_id,
        category_tag=tag,
        order=order,
        page=page,
        total_pages=pages,
        total=len(reviews),
        reviews=items,
        liked=liked,
    )


@router.get("/cinemas/{cinema_id}/tags/{tag}/reviews/me", response_model=ReviewOut)
def my_review(
    cinema_id: str,
    tag: str,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    services.cinemas.require_tag(cinema_id, tag)
    review = services.reviews.get_review(cinema_id, tag, user_id)
    if review is None:
        raise NotFound("You have not reviewed this screen yet")
    return review


@router.put("/cinemas/{cinema_id}/tags/{tag}/reviews/me", response_model=ReviewOut)
def save_my_review(
    cinema_id: str,
    tag: str,
    body: ReviewIn,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    services.cinemas.require_tag(cinema_id, tag)
    scores = Scores(screen=body.screen, picture=body.picture, sound=body.sound, seat=body.seat)
    return services.reviews.upsert_review(
        cinema_id, tag, user_id, scores, comment=body.comment, display_name=body.display_name
    )


@router.delete("/cinemas/{cinema_id}/tags/{tag}/reviews/me")
def delete_my_review(
    cinema_id: str,
    tag: str,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    services.cinemas.require_tag(cinema_id, tag)
    return {"deleted": services.reviews.delete_review(cinema_id, tag, user_id)}


@router.post("/cinemas/{cinema_id}/tags/{tag}/reviews/{author_id}/like", response_model=LikeState)
def toggle_like(
    cinema_id: str,
    tag: str,
    author_id: str,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    services.cinemas.require_tag(cinema_id, tag)
    return services.likes.toggle_like(cinema_id, tag, author_id, user_id)


def _state_event(state: RankedViewState) -> str:
    payload = {
        "reviews": [r.model_dump(mode="json") for r in state.reviews],
        "liked": state.liked,
        "liked_resolved": state.liked_resolved,
        "error": state.error,
    }
    event = "error" if state.error else "snapshot"
    return f"event: {event}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"


@router.get("/cinemas/{cinema_id}/tags/{tag}/reviews/stream")
def stream_reviews(
    cinema_id: str,
    tag: str,
    order: ReviewOrder = ReviewOrder.RECENCY,
    viewer_id: Optional[str] = Depends(optional_user),
    services: Services = Depends(get_services),
):
    """Server-sent events: the full ordered list after every change."""
    services.cinemas.require_tag(cinema_id, tag)
    sub = services.live.subscribe(cinema_id, tag, order, viewer_id=viewer_id)

    def events():
        try:
            for state in sub.updates(heartbeat=STREAM_HEARTBEAT_SECONDS):
                if state is None:
                    yield ": keep-alive\n\n"
                else:
                    yield _state_event(state)
        finally:
            sub.close()

    return StreamingResponse(events(), media_type="text/event-stream", headers={"Cache-Control": "no-cache"})


EXPORT_COLUMNS = [
    "subject_id", "category_tag", "author_id", "display_name", "screen", "picture", "sound", "seat",
    "overall", "comment", "like_count", "created_at", "updated_at",
]


@router.get("/cinemas/{cinema_id}/tags/{tag}/reviews/download")
def download_reviews(
    cinema_id: str,
    tag: str,
    format: str = Query(default="csv", pattern="^(csv|json)$"),
    order: ReviewOrder = ReviewOrder.RECENCY,
    services: Services = Depends(get_services),
):
    services.cinemas.require_tag(cinema_id, tag)
    rows = services.reviews.list_reviews(cinema_id, tag, order)
    filename = f"reviews_{cinema_id}_{tag}"
    if format == "json":
        json_bytes = json.dumps(
            [r.model_dump(mode="json") for r in rows], ensure_ascii=False, indent=2
        ).encode("utf-8")
        return StreamingResponse(io.BytesIO(json_bytes), media_type="application/json",
                                 headers={"Content-Disposition": f'attachment; filename="{filename}.json"'})

    s_buf = io.StringIO()
    w = csv.writer(s_buf)
    w.writerow(EXPORT_COLUMNS)
    for r in rows:
        data = r.model_dump(mode="json")
        w.writerow([data[c] for c in EXPORT_COLUMNS])

    return StreamingResponse(io.BytesIO(s_buf.getvalue().encode("utf-8")), media_type="text/csv",
                             headers={"Content-Disposition": f'attachment; filename="{filename}.csv"'})


# ---------------------------------------------------------------------------
# Favorites
# ---------------------------------------------------------------------------
@router.get("/me/favorites", response_model=CinemaPage)
def my_favorites(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=config.FAVORITES_PAGE_SIZE, ge=1, le=100),
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    cinemas = services.favorites.list_favorites(user_id)
    items, page, pages = paginate(cinemas, page, page_size)
    return CinemaPage(page=page, total_pages=pages, total=len(cinemas), cinemas=items)


@router.get("/me/favorites/{cinema_id}", response_model=FavoriteState)
def favorite_state(cinema_id: str, user_id: str = Depends(current_user), services: Services = Depends(get_services)):
    return FavoriteState(cinema_id=cinema_id, favorite=services.favorites.is_favorite(user_id, cinema_id))


@router.post("/me/favorites/{cinema_id}", response_model=FavoriteState)
def toggle_favorite(cinema_id: str, user_id: str = Depends(current_user), services: Services = Depends(get_services)):
    services.cinemas.get_cinema(cinema_id)
    return services.favorites.toggle(user_id, cinema_id)


@router.delete("/me/favorites/{cinema_id}")
def remove_favorite(cinema_id: str, user_id: str = Depends(current_user), services: Services = Depends(get_services)):
    return {"removed": services.favorites.remove(user_id, cinema_id)}


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
_STATUS = [
    (ValidationError, 422),
    (NotFound, 404),
    (LikeInFlight, 409),
    (TransactionFailed, 503),
]


def _error_response(request: Request, exc: CinemaRankError) -> JSONResponse:
    status = next((code for cls, code in _STATUS if isinstance(exc, cls)), 400)
    body = {"error": exc.message}
    if isinstance(exc, ValidationError):
        body["errors"] = exc.errors
    if status >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=status, content=body)


def create_app(services: Optional[Services] = None) -> FastAPI:
    lifespan = None
    if services is None:
        services = Services(SessionLocal)

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            configure_logging()
            init_db(engine)
            logger.info("cinemarank_started", environment=config.ENVIRONMENT)
            yield

    app = FastAPI(title="CinemaRank API", version="1.0.0", lifespan=lifespan)
    app.state.services = services
    app.add_exception_handler(CinemaRankError, _error_response)

    @app.middleware("http")
    async def bind_log_context(request: Request, call_next):
        clear_context()
        add_context(path=request.url.path, user_id=request.headers.get("x-user-id"))
        try:
            return await call_next(request)
        finally:
            clear_context()

    app.include_router(router)
    return app


app = create_app()
