from fastapi import FastAPI, Depends, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from starlette.exceptions import HTTPException as StarletteHTTPException
from dtos.chat_request import ChatRequest
from contextlib import asynccontextmanager
import os
from typing import List, Optional
import httpx
import logging

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

# Local imports
from database import get_db, engine, SessionLocal
from models import Base, User
from schemas import (
    ThreadResponse, ThreadDetailResponse,
    UserCreate, UserResponse, Token,
    ModelUsage, PoolUsage, StatusResponse,
)
from services import ThreadService, AuthService
from services.billing import InvalidSignature, construct_event, handle_event
from services.counters import UsageCounters, create_redis_client, user_usage_key
from services.errors import RelayError
from services.plans import ModelClass, UNLIMITED, daily_limit, get_plan, resolve_tier
from services.providers import ADAPTERS, get_adapter
from services.credentials import load_credentials
from services.relay import ChatRelay
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy import text


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create tables if they don't exist
    Base.metadata.create_all(bind=engine)

    app.state.session_factory = SessionLocal
    app.state.redis = create_redis_client()
    app.state.http_client = httpx.AsyncClient()
    app.state.pools = {}

    yield

    await app.state.http_client.aclose()
    await app.state.redis.aclose()


app = FastAPI(
    title="Rocode API",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
origins = os.getenv("ALLOWED_ORIGINS", "*").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins if origins != ["*"] else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Chat-Id", "Retry-After", "X-RateLimit-Remaining"],
    max_age=3600
)


# Every error leaves the API as {"error": "..."}
@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError):
    return JSONResponse({"error": exc.message}, status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"error": "Invalid request body."}, status_code=status.HTTP_400_BAD_REQUEST)


@app.exception_handler(SQLAlchemyError)
@app.exception_handler(RedisError)
async def store_error_handler(request: Request, exc: Exception):
    logger.exception(f"Storage failure on {request.url.path}")
    return JSONResponse({"error": "Internal server error"}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}")
    return JSONResponse({"error": "Internal server error"}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


@app.get("/")
async def root():
    return {"message": "Rocode API", "status": "running"}

@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "rocode-api"}


@app.get("/health/detailed")
async def detailed_health_check(request: Request, db: Session = Depends(get_db)):
    """Health of the database, Redis and the configured credential pools."""
    health_status = {
        "status": "healthy",
        "service": "rocode-api",
        "checks": {}
    }

    # Check database connection
    try:
        db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = {"status": "healthy"}
    except SQLAlchemyError as e:
        health_status["checks"]["database"] = {"status": "unhealthy", "error": type(e).__name__}
        health_status["status"] = "unhealthy"

    # Check Redis connection
    try:
        await request.app.state.redis.ping()
        health_status["checks"]["redis"] = {"status": "healthy"}
    except RedisError as e:
        health_status["checks"]["redis"] = {"status": "unhealthy", "error": type(e).__name__}
        health_status["status"] = "unhealthy"

    # Credential counts only, never the values
    for name, adapter_class in ADAPTERS.items():
        count = len(load_credentials(adapter_class.credential_env))
        health_status["checks"][name] = {
            "status": "configured" if count else "not_configured",
            "credentials": count
        }

    return health_status


# OAuth2 configuration
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


async def get_optional_user(token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> Optional[User]:
    """Resolve the caller from a bearer token, or None if there is no valid one."""
    if not token:
        return None

    token_payload = AuthService.decode_token(token)
    if token_payload is None or token_payload.type != "access":
        return None

    user = AuthService.get_user_by_id(db, token_payload.sub)
    if user is None or not user.is_active:
        return None

    return user


# Dependency to get current user from JWT token
async def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    """Get current user from JWT token."""
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def get_counters(request: Request) -> UsageCounters:
    return UsageCounters(request.app.state.redis)


def get_relay(request: Request, counters: UsageCounters = Depends(get_counters)) -> ChatRelay:
    state = request.app.state
    return ChatRelay(
        session_factory=getattr(state, "session_factory", SessionLocal),
        counters=counters,
        http_client=state.http_client,
        pools=state.pools,
    )


# Chat turn: streams the model reply as SSE
@app.post("/chat")
async def chat(
    req: ChatRequest,
    current_user: Optional[User] = Depends(get_optional_user),
    relay: ChatRelay = Depends(get_relay)
):
    turn = await relay.start_turn(
        user=current_user,
        thread_id=req.thread_id,
        message=req.message,
        model=req.model,
    )

    return StreamingResponse(
        turn.events(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
            "X-Chat-Id": turn.thread_id,
        }
    )


@app.get("/status", response_model=StatusResponse)
async def get_status(
    current_user: User = Depends(get_current_user),
    counters: UsageCounters = Depends(get_counters),
    relay: ChatRelay = Depends(get_relay)
) -> StatusResponse:
    """Plan, daily usage per model class and remaining shared capacity."""
    tier = resolve_tier(current_user.plan)
    plan = get_plan(tier)

    usage = {}
    pools = {}
    for model in ModelClass:
        limit = daily_limit(tier, model)
        used = await counters.get_usage(user_usage_key(current_user.id, model.value))
        usage[model.value] = ModelUsage(
            used=used,
            limit=limit,
            remaining=UNLIMITED if limit == UNLIMITED else max(0, limit - used)
        )

        pool_status = await relay.pool_for(get_adapter(model)).get_pool_status()
        pools[model.value] = PoolUsage(total=pool_status.total, remaining=pool_status.remaining)

    return StatusResponse(
        plan=tier.value,
        plan_label=plan.label,
        plan_badge=plan.badge,
        usage=usage,
        pools=pools
    )


# Thread management endpoints
@app.post("/threads", response_model=ThreadDetailResponse)
async def create_thread(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ThreadDetailResponse:
    """Create a new, empty conversation thread."""
    db_thread = ThreadService.create_thread(db=db, user_id=current_user.id)

    return ThreadDetailResponse.model_validate(db_thread)


@app.get("/threads", response_model=List[ThreadResponse])
async def list_threads(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> List[ThreadResponse]:
    """List the caller's threads, most recently updated first."""
    threads = ThreadService.get_user_threads(
        db=db,
        user_id=current_user.id,
        skip=skip,
        limit=limit
    )

    return [ThreadResponse.model_validate(thread) for thread in threads]


@app.get("/threads/{thread_id}", response_model=ThreadDetailResponse)
async def get_thread(
    thread_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ThreadDetailResponse:
    """Get a specific thread with its messages."""
    thread = ThreadService.get_thread(
        db=db,
        thread_id=thread_id,
        user_id=current_user.id
    )

    if not thread:
        raise HTTPException(status_code=404, detail="Chat not found")

    return ThreadDetailResponse.model_validate(thread)


@app.delete("/threads/{thread_id}")
async def delete_thread(
    thread_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> dict:
    """Delete a thread."""
    deleted = ThreadService.delete_thread(
        db=db,
        thread_id=thread_id,
        user_id=current_user.id
    )

    if not deleted:
        raise HTTPException(status_code=404, detail="Chat not found")

    return {"ok": True}


# Authentication endpoints
@app.post("/auth/signup", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    user_data: UserCreate,
    db: Session = Depends(get_db)
) -> UserResponse:
    """Register a new user on the free plan."""
    problem = AuthService.validate_credentials(user_data.username, user_data.password)
    if problem:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=problem)

    if AuthService.get_user_by_username(db, user_data.username):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username already taken"
        )

    user = AuthService.create_user(db, user_data)

    return UserResponse.model_validate(user)


@app.post("/auth/login", response_model=Token)
async def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db)
) -> Token:
    """Login with username and password."""
    user = AuthService.authenticate_user(db, form_data.username, form_data.password)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Inactive user"
        )

    return Token(
        access_token=AuthService.create_access_token(user.id),
        refresh_token=AuthService.create_refresh_token(user.id)
    )


@app.post("/auth/refresh", response_model=Token)
async def refresh_token(
    refresh_token: str,
    db: Session = Depends(get_db)
) -> Token:
    """Refresh access token using refresh token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid refresh token",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token_payload = AuthService.decode_token(refresh_token)
    if token_payload is None or token_payload.type != "refresh":
        raise credentials_exception

    user = AuthService.get_user_by_id(db, token_payload.sub)
    if user is None or not user.is_active:
        raise credentials_exception

    return Token(
        access_token=AuthService.create_access_token(user.id),
        refresh_token=AuthService.create_refresh_token(user.id)
    )


@app.get("/auth/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: User = Depends(get_current_user)
) -> UserResponse:
    """Get current user information."""
    return UserResponse.model_validate(current_user)


# Subscription webhook
@app.post("/webhooks/stripe")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)) -> dict:
    """Apply subscription changes pushed by Stripe."""
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    if not signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing signature")

    try:
        event = construct_event(payload, signature)
    except InvalidSignature as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature")

    try:
        handle_event(db, event)
    except Exception:
        logger.exception("Webhook handler failed")
        db.rollback()
        return JSONResponse({"error": "Webhook handler failed"}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return {"received": True}
