"""User model for authentication and subscription state."""
from sqlalchemy import Column, String, DateTime, Boolean, func
from uuid import uuid4
from .threads import Base


class User(Base):
    """
    SQLAlchemy model for users.

    Stores credentials and the subscription tier that governs quotas.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()), index=True)
    username = Column(String(30), unique=True, nullable=False, index=True)
    hashed_password = Column(String, nullable=False)
    plan = Column(String(16), nullable=False, default="free")
    stripe_customer_id = Column(String, nullable=True, index=True)
    stripe_subscription_id = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
