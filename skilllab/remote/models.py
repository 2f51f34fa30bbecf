"""
Storage for the shared remote document store.

Documents are kept whole in a JSON column; the fields the rules and queries
look at are copied into indexed columns next to it.
"""

from typing import Any, Dict, Optional

from sqlalchemy import Column, Integer, String, DateTime, JSON, Index, MetaData
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import func

from skilllab.core.config import settings
from skilllab.security.session import scope_key


class RemoteBase(DeclarativeBase):
    """Declarative base for the remote store, separate from the local cache."""
    metadata = MetaData()


class RemoteDocument(RemoteBase):
    __tablename__ = "documents"

    kind = Column(String(20), primary_key=True)
    id = Column(String(64), primary_key=True)

    author_id = Column(String(64), nullable=False, index=True)
    group_id = Column(String(64), nullable=False)
    year = Column(Integer, nullable=False)
    scope_key = Column(String(100), nullable=False, index=True)
    lifecycle_state = Column(String(20), nullable=False)
    edit_count = Column(Integer, nullable=False)

    document = Column(JSON, nullable=False)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    updated_by = Column(String(64), nullable=True)

    __table_args__ = (
        Index('ix_documents_kind_scope', 'kind', 'scope_key'),
    )

    # Indexed columns that queries may filter on besides the document itself
    QUERYABLE = ("id", "author_id", "group_id", "year", "scope_key", "lifecycle_state", "edit_count")

    def store(self, document: Dict[str, Any], actor_id: Optional[str]) -> None:
        self.kind = document["kind"]
        self.id = document["id"]
        self.author_id = document["author_id"]
        self.group_id = document["group_id"]
        self.year = document["year"]
        self.scope_key = scope_key(document["group_id"], document["year"])
        self.lifecycle_state = document["lifecycle_state"]
        self.edit_count = document["edit_count"]
        self.document = dict(document)
        self.updated_by = actor_id

    def as_document(self) -> Dict[str, Any]:
        document = dict(self.document)
        document["scope_key"] = self.scope_key
        return document


def create_remote_engine(url: Optional[str] = None) -> AsyncEngine:
    url = url or settings.REMOTE_DATABASE_URL
    if url.endswith(":memory:") or url.endswith("://"):
        # One shared connection so every session sees the same in-memory database
        return create_async_engine(
            url,
            echo=settings.DATABASE_ECHO,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(url, echo=settings.DATABASE_ECHO)


def create_remote_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


async def init_remote_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(RemoteBase.metadata.create_all)
