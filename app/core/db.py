from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from app.core.config import settings


def build_engine(database_url: str = None):
    url = database_url or settings.DATABASE_URL
    if url.startswith("sqlite"):
        # in-memory sqlite must share one connection across threads
        return create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, echo=False)


def init_db(engine):
    SQLModel.metadata.create_all(bind=engine)
