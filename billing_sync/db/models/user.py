from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from billing_sync.db.base import Base


class User(Base):
    """Local account. Read-only here: looked up by billing email and token subject."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String, nullable=True)
    email = Column(String, unique=True, index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
