"""
Database connection and session management
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import settings


def make_engine(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


engine = make_engine(settings.DATABASE_URL)

# Session maker
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)

# Base class for models
Base = declarative_base()


def init_db(bind=None) -> None:
    from chunked_upload.models import upload_session  # noqa: F401  registers the table

    Base.metadata.create_all(bind=bind or engine)
