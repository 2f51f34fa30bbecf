from sqlalchemy import create_engine, MetaData
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool
from typing import Optional

from skilllab.core.config import settings


class Base(DeclarativeBase):
    """Declarative base for the device-local cache."""
    metadata = MetaData(
        naming_convention={
            "ix": "ix_%(column_0_label)s",
            "uq": "uq_%(table_name)s_%(column_0_name)s",
            "ck": "ck_%(table_name)s_%(constraint_name)s",
            "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
            "pk": "pk_%(table_name)s"
        }
    )


def create_local_engine(url: Optional[str] = None) -> Engine:
    url = url or settings.LOCAL_DATABASE_URL
    if url.endswith(":memory:") or url.endswith("://"):
        return create_engine(
            url,
            echo=settings.DATABASE_ECHO,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool
        )
    return create_engine(url, echo=settings.DATABASE_ECHO, future=True)


def create_local_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        bind=bind,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False
    )


def init_local_db(bind: Engine) -> None:
    # Import models so their tables are registered on Base.metadata
    import skilllab.models  # noqa: F401

    Base.metadata.create_all(bind)
