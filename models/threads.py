"""Thread and message models for conversation history."""
import secrets
import time

from sqlalchemy import Column, String, DateTime, Text, Integer, Boolean, ForeignKey, func
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def generate_thread_id() -> str:
    """Opaque thread identifier, e.g. ``chat_1718000000000_k3j9xa``."""
    return f"chat_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


class Thread(Base):
    """
    SQLAlchemy model for conversation threads.

    Messages are append-only and ordered by insertion. The title is derived
    from the first user message and never changes afterwards.
    """
    __tablename__ = "threads"

    id = Column(String(64), primary_key=True, default=generate_thread_id, index=True)
    user_id = Column(String, nullable=False, index=True)
    title = Column(String(255), nullable=False, default="New Chat")
    last_model = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    messages = relationship(
        "Message",
        back_populates="thread",
        order_by="Message.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class Message(Base):
    """A single chat message. Immutable once written."""
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    thread_id = Column(String(64), ForeignKey("threads.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(16), nullable=False)  # user | assistant
    content = Column(Text, nullable=False)
    stopped = Column(Boolean, default=False, nullable=False)  # reply cut short by the caller
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    thread = relationship("Thread", back_populates="messages")
