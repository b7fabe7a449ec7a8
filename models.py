# backend/models.py
from datetime import datetime
from sqlalchemy import (
    Column, String, Text, Boolean, DateTime, LargeBinary, ForeignKey, JSON,
)
from sqlalchemy.orm import relationship
from db import Base

ROLES = ("learner", "educator", "admin")
EXPLANATION_STYLES = ("bullet", "paragraph", "step-by-step")
DEFAULT_LANGUAGE = "C++"
PLACEHOLDER_TITLE = "New Conversation"


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True)
    username = Column(String(30), unique=True, nullable=False, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)

    role = Column(String, nullable=False, default="learner")
    field_of_work = Column(Text, nullable=False)
    goal = Column(Text, nullable=False)

    # avatar is stored inline, not as a file reference
    avatar = Column(LargeBinary, nullable=True)
    avatar_content_type = Column(String, nullable=True)

    is_verified = Column(Boolean, nullable=False, default=False)
    otp = Column(String, nullable=True)
    otp_expires = Column(DateTime, nullable=True)
    reset_token_hash = Column(String, nullable=True, index=True)
    reset_expires = Column(DateTime, nullable=True)

    preferred_language = Column(String, nullable=False, default=DEFAULT_LANGUAGE)
    explanation_style = Column(String, nullable=False, default="bullet")

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    conversations = relationship("Conversation", back_populates="user", cascade="all, delete-orphan")


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False, default=PLACEHOLDER_TITLE)
    # [{"role": "user" | "model", "parts": [{"text": ...}]}, ...]
    history = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, index=True)

    user = relationship("User", back_populates="conversations")


class SessionRecord(Base):
    __tablename__ = "sessions"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    data = Column(JSON, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
