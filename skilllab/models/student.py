from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func

from skilllab.core.database import Base


class Group(Base):
    __tablename__ = "groups"

    id = Column(String(64), primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    year = Column(Integer, nullable=False)
    description = Column(String(500), nullable=True)
    current_unit = Column(String(20), nullable=True)  # Year 2/3 rotation unit

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class Student(Base):
    """Centrally owned student; records reference it by id only."""
    __tablename__ = "students"

    id = Column(String(64), primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    student_number = Column(String(20), unique=True, nullable=True)
    email = Column(String(255), nullable=True)
    group_id = Column(String(64), nullable=False, index=True)
    year = Column(Integer, nullable=False)
    unit = Column(String(20), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
