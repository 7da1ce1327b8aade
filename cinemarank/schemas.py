from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime
from enum import Enum


class ReviewOrder(str, Enum):
    RECENCY = "recency"
    POPULARITY = "popularity"


class Scores(BaseModel):
    screen: float = 0.0
    picture: float = 0.0
    sound: float = 0.0
    seat: float = 0.0

    def overall(self) -> float:
        return (self.screen + self.picture + self.sound + self.seat) / 4


class ReviewIn(BaseModel):
    screen: float
    picture: float
    sound: float
    seat: float
    comment: str = Field(default="", max_length=2000)
    display_name: str = Field(default="", max_length=50)


class ReviewOut(BaseModel):
    subject_id: str
    category_tag: str
    author_id: str
    display_name: str = ""
    screen: float = 0.0
    picture: float = 0.0
    sound: float = 0.0
    seat: float = 0.0
    overall: float = 0.0
    comment: str = ""
    like_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StatsOut(BaseModel):
    subject_id: str
    category_tag: str
    count: int = 0
    sum_overall: float = 0.0
    avg_overall: float = 0.0
    updated_at: Optional[datetime] = None


class LikeState(BaseModel):
    liked: bool
    like_count: int


class ReviewPage(BaseModel):
    subject_id: str
    category_tag: str
    order: ReviewOrder
    page: int
    total_pages: int
    total: int
    reviews: List[ReviewOut]
    liked: Dict[str, bool] = {}


class CinemaIn(BaseModel):
    id: str = Field(..., min_length=1)
    name: str
    address: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None
    tags: List[str] = []
    brand: Optional[str] = None
    region: Optional[str] = None


class CinemaOut(BaseModel):
    id: str
    name: str = ""
    address: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None
    tags: List[str] = []
    brand: str = "기타"
    region: str = "기타"
    distance_km: Optional[float] = None


class CinemaPage(BaseModel):
    page: int
    total_pages: int
    total: int
    cinemas: List[CinemaOut]


class RankItem(BaseModel):
    cinema_id: str
    cinema_name: str
    tag: str
    avg_overall: float
    count: int


class FavoriteState(BaseModel):
    cinema_id: str
    favorite: bool
