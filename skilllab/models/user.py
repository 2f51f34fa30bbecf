from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from skilllab.core.database import Base


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    TRAINER = "trainer"


class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    email = Column(String(255), nullable=True)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.TRAINER)
    is_active = Column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    last_login = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    assignments = relationship(
        "TrainerAssignment",
        back_populates="user",
        cascade="all, delete-orphan"
    )


class TrainerAssignment(Base):
    """One (group, year) pair a trainer may act within."""
    __tablename__ = "trainer_assignments"
    __table_args__ = (
        UniqueConstraint("user_id", "group_id", "year", name="uq_trainer_assignment"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    group_id = Column(String(64), nullable=False)
    year = Column(Integer, nullable=False)

    user = relationship("User", back_populates="assignments")
