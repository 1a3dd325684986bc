"""Conversation store: CRUD over chat threads and their messages."""
from datetime import datetime, timezone
from typing import Optional, List

from sqlalchemy.orm import Session
from sqlalchemy import desc

from models.threads import Thread, Message

TITLE_MAX_LENGTH = 40


def make_title(content: str) -> str:
    """Thread title from the first user message."""
    if len(content) > TITLE_MAX_LENGTH:
        return content[:TITLE_MAX_LENGTH] + "…"
    return content


class ThreadService:
    """Service class for thread CRUD operations."""

    @staticmethod
    def create_thread(db: Session, user_id: str) -> Thread:
        """Create a new, empty thread for a user."""
        db_thread = Thread(user_id=user_id)

        db.add(db_thread)
        db.commit()
        db.refresh(db_thread)

        return db_thread

    @staticmethod
    def get_thread(db: Session, thread_id: str, user_id: Optional[str] = None) -> Optional[Thread]:
        """Retrieve a thread by ID."""
        query = db.query(Thread).filter(Thread.id == thread_id)

        if user_id:
            query = query.filter(Thread.user_id == user_id)

        return query.first()

    @staticmethod
    def get_user_threads(db: Session, user_id: str, skip: int = 0, limit: int = 20) -> List[Thread]:
        """Retrieve all threads for a specific user, most recently updated first."""
        return db.query(Thread).filter(
            Thread.user_id == user_id
        ).order_by(
            desc(Thread.updated_at)
        ).offset(skip).limit(limit).all()

    @staticmethod
    def append_message(
        db: Session,
        thread_id: str,
        role: str,
        content: str,
        stopped: bool = False,
        model: Optional[str] = None,
    ) -> Optional[Thread]:
        """
        Append a message to a thread.

        The first user message also sets the thread title. When ``model`` is
        given it is remembered as the thread's last-used model class.

        Returns:
            The updated thread, or None if it does not exist
        """
        thread = db.query(Thread).filter(Thread.id == thread_id).first()

        if not thread:
            return None

        first_user_message = role == "user" and not any(m.role == "user" for m in thread.messages)

        thread.messages.append(Message(role=role, content=content, stopped=stopped))

        if first_user_message:
            thread.title = make_title(content)

        if model:
            thread.last_model = model

        thread.updated_at = datetime.now(timezone.utc)

        db.commit()
        db.refresh(thread)

        return thread

    @staticmethod
    def delete_thread(db: Session, thread_id: str, user_id: str) -> bool:
        """Delete a thread and its messages."""
        thread = db.query(Thread).filter(
            Thread.id == thread_id,
            Thread.user_id == user_id
        ).first()

        if not thread:
            return False

        db.delete(thread)
        db.commit()

        return True
