from datetime import timezone

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKeyConstraint,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.types import TypeDecorator
from .database import Base


class UTCDateTime(TypeDecorator):
    """Timestamps stored as UTC and read back timezone-aware.

    SQLite keeps no offset; naive values coming back from it are UTC.
    """
    impl = DateTime
    cache_ok = True

    def __init__(self):
        super().__init__(timezone=True)

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Cinema(Base):
    __tablename__ = "cinemas"
    id = Column(String, primary_key=True)
    name = Column(String, default="")
    address = Column(String, default="")
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    tags = Column(JSON, default=list)
    brand = Column(String, nullable=True)
    region = Column(String, nullable=True)


class Review(Base):
    """One review per (cinema, tag, author); the composite key is the identity."""
    __tablename__ = "reviews"
    subject_id = Column(String, primary_key=True)
    category_tag = Column(String, primary_key=True)
    author_id = Column(String, primary_key=True)
    display_name = Column(String, default="")
    screen = Column(Float, nullable=False, default=0.0)
    picture = Column(Float, nullable=False, default=0.0)
    sound = Column(Float, nullable=False, default=0.0)
    seat = Column(Float, nullable=False, default=0.0)
    overall = Column(Float, nullable=True)
    comment = Column(Text, default="")
    like_count = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime(), nullable=True)
    updated_at = Column(UTCDateTime(), nullable=True)
    version = Column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("ix_reviews_recency", "subject_id", "category_tag", "updated_at"),
        Index("ix_reviews_popularity", "subject_id", "category_tag", "like_count", "updated_at"),
    )


class ReviewStats(Base):
    """Running count/sum/average of `Review.overall` for one (cinema, tag)."""
    __tablename__ = "review_stats"
    subject_id = Column(String, primary_key=True)
    category_tag = Column(String, primary_key=True)
    count = Column(Integer, nullable=False, default=0)
    sum_overall = Column(Float, nullable=False, default=0.0)
    avg_overall = Column(Float, nullable=False, default=0.0, index=True)
    updated_at = Column(UTCDateTime(), nullable=True)
    version = Column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}


class ReviewLike(Base):
    """Existence of a row is the "liked" state; rows are never updated."""
    __tablename__ = "review_likes"
    subject_id = Column(String, primary_key=True)
    category_tag = Column(String, primary_key=True)
    author_id = Column(String, primary_key=True)
    liker_id = Column(String, primary_key=True)
    created_at = Column(UTCDateTime(), nullable=True)
    __table_args__ = (
        ForeignKeyConstraint(
            ["subject_id", "category_tag", "author_id"],
            ["reviews.subject_id", "reviews.category_tag", "reviews.author_id"],
            ondelete="CASCADE",
        ),
    )


class Favorite(Base):
    __tablename__ = "favorites"
    viewer_id = Column(String, primary_key=True)
    cinema_id = Column(String, primary_key=True)
    created_at = Column(UTCDateTime(), nullable=True)
