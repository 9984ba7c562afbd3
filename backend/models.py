from sqlalchemy import Column, Integer, String, Text, TIMESTAMP, Float, Boolean, ForeignKey
from database import Base
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every timestamp column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    email = Column(String(200), unique=True, nullable=False, index=True)
    password_hash = Column(Text, nullable=False, default="")
    is_admin = Column(Boolean, nullable=False, default=False)
    exp = Column(Integer, nullable=False, default=0)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=utcnow)


class Report(Base):
    __tablename__ = "trash_posts"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    image_path = Column(Text, nullable=False, default="")
    description = Column(Text, nullable=False)
    trail = Column(Text, nullable=False, default="")
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow, index=True)


class Comment(Base):
    __tablename__ = "comments"
    id = Column(Integer, primary_key=True, autoincrement=True)
    post_id = Column(Integer, ForeignKey("trash_posts.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)
