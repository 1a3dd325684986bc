"""Authentication service for user management and JWT tokens."""
from datetime import datetime, timedelta, timezone
from typing import Optional
import os
import re
from passlib.context import CryptContext
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from models.users import User
from schemas.auth import UserCreate, TokenPayload


# Configuration
SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key-here-change-in-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 30
REFRESH_TOKEN_EXPIRE_DAYS = 7

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")

# Password hashing with Argon2
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


class AuthService:
    """Service class for authentication operations."""

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        """Verify a password against its hash."""
        return pwd_context.verify(plain_password, hashed_password)

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash a password."""
        return pwd_context.hash(password)

    @staticmethod
    def _create_token(subject: str, token_type: str, expires_delta: timedelta) -> str:
        now = datetime.now(timezone.utc)
        to_encode = {
            "sub": str(subject),
            "exp": now + expires_delta,
            "iat": now,
            "type": token_type
        }
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def create_access_token(subject: str, expires_delta: Optional[timedelta] = None) -> str:
        """Create a JWT access token."""
        return AuthService._create_token(
            subject, "access", expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
        )

    @staticmethod
    def create_refresh_token(subject: str) -> str:
        """Create a JWT refresh token."""
        return AuthService._create_token(subject, "refresh", timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS))

    @staticmethod
    def decode_token(token: str) -> Optional[TokenPayload]:
        """Decode and validate a JWT token."""
        try:
            payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
            return TokenPayload(**payload)
        except (JWTError, ValueError):
            return None

    @staticmethod
    def validate_credentials(username: str, password: str) -> Optional[str]:
        """Return a user-facing problem with the signup input, or None if it is fine."""
        if not username.strip() or not password:
            return "Please fill in all fields."
        if len(username) < 3:
            return "Username must be at least 3 characters."
        if len(username) > 30:
            return "Username too long."
        if len(password) < 4:
            return "Password must be at least 4 characters."
        if len(password) > 128:
            return "Password too long."
        if not USERNAME_PATTERN.match(username):
            return "Username can only contain letters, numbers, _ and -."
        return None

    @staticmethod
    def create_user(db: Session, user_data: UserCreate) -> User:
        """Create a new user on the free plan."""
        db_user = User(
            username=user_data.username.lower(),
            hashed_password=AuthService.hash_password(user_data.password),
        )

        db.add(db_user)
        db.commit()
        db.refresh(db_user)

        return db_user

    @staticmethod
    def get_user_by_username(db: Session, username: str) -> Optional[User]:
        """Get a user by username."""
        return db.query(User).filter(User.username == username.lower()).first()

    @staticmethod
    def get_user_by_id(db: Session, user_id: str) -> Optional[User]:
        """Get a user by ID."""
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def authenticate_user(db: Session, username: str, password: str) -> Optional[User]:
        """Authenticate a user by username and password."""
        user = AuthService.get_user_by_username(db, username)
        if not user:
            return None
        if not AuthService.verify_password(password, user.hashed_password):
            return None
        return user
