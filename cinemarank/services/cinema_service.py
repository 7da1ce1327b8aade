import math
from typing import List, Optional

from sqlalchemy.orm import Session

from .. import config
from ..exceptions import NotFound, ValidationError
from ..models import Cinema, ReviewStats
from ..schemas import CinemaIn, CinemaOut, RankItem
from ..utils.logging import get_logger
from ..utils.text import clean_text
from .transactions import TransactionCoordinator

logger = get_logger(__name__)

BRANDS = ("CGV", "롯데시네마", "메가박스", "기타")
REGIONS = ("서울", "경기", "충청", "전라", "강원", "경상", "기타")

_REGION_PREFIXES = [
    ("서울", ("서울",)),
    ("경기", ("경기", "인천")),
    ("충청", ("충북", "충남", "대전", "세종")),
    ("전라", ("전북", "전남", "광주")),
    ("강원", ("강원",)),
    ("경상", ("경북", "경남", "부산", "대구", "울산")),
]

EARTH_RADIUS_KM = 6371.0


def infer_brand(name: str) -> str:
    n = (name or "").lower()
    if "cgv" in n:
        return "CGV"
    if "롯데" in n or "lotte" in n:
        return "롯데시네마"
    if "메가" in n or "mega" in n:
        return "메가박스"
    return "기타"


def infer_region(address: str) -> str:
    a = (address or "").strip()
    for region, prefixes in _REGION_PREFIXES:
        if a.startswith(prefixes):
            return region
    return "기타"


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


def _coord(value) -> Optional[float]:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) else None


def cinema_out(row: Cinema, distance_km: Optional[float] = None) -> CinemaOut:
    name = row.name or ""
    address = row.address or ""
    tags = [str(t) for t in row.tags] if isinstance(row.tags, list) else []
    return CinemaOut(
        id=row.id,
        name=name,
        address=address,
        lat=_coord(row.lat),
        lng=_coord(row.lng),
        tags=tags,
        brand=row.brand if row.brand in BRANDS else infer_brand(name),
        region=row.region if row.region in REGIONS else infer_region(address),
        distance_km=distance_km,
    )


class CinemaCatalogue:
    def __init__(self, coordinator: TransactionCoordinator):
        self.coordinator = coordinator

    def add_cinema(self, cinema: CinemaIn) -> CinemaOut:
        tags = []
        for tag in cinema.tags:
            tag = clean_text(tag)
            if tag and tag not in tags:
                tags.append(tag)

        def work(db: Session):
            row = db.get(Cinema, cinema.id)
            if row is None:
                row = Cinema(id=cinema.id)
                db.add(row)
            row.name = clean_text(cinema.name)
            row.address = clean_text(cinema.address)
            row.lat = cinema.lat
            row.lng = cinema.lng
            row.tags = tags
            row.brand = cinema.brand
            row.region = cinema.region
            return cinema_out(row)

        out = self.coordinator.run_atomically(work, label="add_cinema")
        logger.info("cinema_saved", cinema_id=out.id, tags=len(out.tags))
        return out

    def find_cinema(self, cinema_id: str) -> Optional[CinemaOut]:
        def fn(db: Session):
            row = db.get(Cinema, cinema_id)
            return cinema_out(row) if row is not None else None

        return self.coordinator.read(fn, label="get_cinema")

    def get_cinema(self, cinema_id: str) -> CinemaOut:
        cinema = self.find_cinema(cinema_id)
        if cinema is None:
            raise NotFound(f"Cinema {cinema_id} not found")
        return cinema

    def require_tag(self, cinema_id: str, category_tag: str) -> CinemaOut:
        """Return the cinema, or raise NotFound unless it offers the tag."""
        cinema = self.get_cinema(cinema_id)
        if category_tag not in cinema.tags:
            raise NotFound(f"{cinema.name or cinema_id} has no '{category_tag}' screen")
        return cinema

    def list_cinemas(self, brand: Optional[str] = None, region: Optional[str] = None) -> List[CinemaOut]:
        if brand is not None and brand not in BRANDS:
            raise ValidationError({"brand": [f"Unknown brand {brand!r}"]})
        if region is not None and region not in REGIONS:
            raise ValidationError({"region": [f"Unknown region {region!r}"]})
        cinemas = self.coordinator.read(
            lambda db: [cinema_out(r) for r in db.query(Cinema).order_by(Cinema.name.asc(), Cinema.id.asc()).all()],
            label="list_cinemas",
        )
        return [
            c for c in cinemas
            if (brand is None or c.brand == brand) and (region is None or c.region == region)
        ]

    def nearby(self, lat: float, lng: float, radius_m: int = config.NEARBY_RADIUS_M) -> List[CinemaOut]:
        """Cinemas within `radius_m` of (lat, lng), nearest first."""
        if _coord(lat) is None or _coord(lng) is None or not -90 <= lat <= 90 or not -180 <= lng <= 180:
            raise ValidationError({"position": ["Invalid coordinates"]})
        if radius_m <= 0:
            raise ValidationError({"radius_m": ["Radius must be positive"]})
        out = []
        for c in self.list_cinemas():
            if c.lat is None or c.lng is None:
                continue
            d = haversine_km(lat, lng, c.lat, c.lng)
            if d * 1000 <= radius_m:
                out.append(c.model_copy(update={"distance_km": d}))
        out.sort(key=lambda c: c.distance_km)
        return out

    def ranking(self, limit: int = config.RANKING_LIMIT) -> List[RankItem]:
        """Best-rated (cinema, tag) pairs, read from the stats rows only."""
        if limit < 1:
            raise ValidationError({"limit": ["Limit must be at least 1"]})

        def fn(db: Session):
            rows = (
                db.query(ReviewStats, Cinema.name)
                .join(Cinema, Cinema.id == ReviewStats.subject_id)
                .filter(ReviewStats.count > 0)
                .order_by(ReviewStats.avg_overall.desc(), ReviewStats.count.desc(), Cinema.name.asc())
                .limit(limit)
                .all()
            )
            return [
                RankItem(
                    cinema_id=stats.subject_id,
                    cinema_name=name or "",
                    tag=stats.category_tag,
                    avg_overall=float(stats.avg_overall or 0.0),
                    count=int(stats.count or 0),
                )
                for stats, name in rows
            ]

        return self.coordinator.read(fn, label="ranking")
