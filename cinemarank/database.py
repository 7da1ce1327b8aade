from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from .config import DB_URL

Base = declarative_base()


def make_engine(url: str = DB_URL):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


def make_session_factory(bind):
    # expire_on_commit=False: rows are converted to output models after commit
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


def init_db(bind) -> None:
    from . import models  # noqa: F401  registers tables on Base.metadata
    Base.metadata.create_all(bind=bind)


engine = make_engine()
SessionLocal = make_session_factory(engine)
