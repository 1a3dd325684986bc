"""Streaming chat relay.

A turn moves through ``Validating -> QuotaChecking -> CredentialSelecting ->
UpstreamCalling`` inside ``ChatRelay.start_turn``; any rejection there is
raised as a ``RelayError`` before a single byte is streamed. The returned
``ChatTurn`` then relays the upstream SSE stream (``Streaming``) and always
runs ``Finalizing`` exactly once, whether the upstream finished, failed, or
the caller went away.
"""
import asyncio
import json
import logging
import os
from enum import Enum
from typing import AsyncIterator, Callable, Dict, List, Optional

import httpx
from sqlalchemy.orm import Session

from models.users import User
from services.counters import UsageCounters, user_usage_key
from services.credentials import CredentialLease, CredentialPool, PoolExhausted
from services.errors import (
    BadRequest,
    Forbidden,
    InternalFailure,
    PoolExhaustedError,
    QuotaExceeded,
    RateLimited,
    Unauthenticated,
    UpstreamUnavailable,
)
from services.plans import ModelClass, UNLIMITED, can_use_model, daily_limit, max_message_length
from services.providers import ProviderAdapter, build_messages, get_adapter
from services.sse import DONE_EVENT, SSELineFramer, extract_data, format_event
from services.threads import ThreadService

logger = logging.getLogger(__name__)

MAX_OUTPUT_TOKENS = int(os.getenv("MAX_OUTPUT_TOKENS", "2048"))
UPSTREAM_READ_TIMEOUT = float(os.getenv("UPSTREAM_READ_TIMEOUT", "60"))
RATE_LIMIT_REQUESTS = int(os.getenv("RATE_LIMIT_REQUESTS", "10"))
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))

# The read timeout bounds the gap between two upstream chunks, not the whole turn.
UPSTREAM_TIMEOUT = httpx.Timeout(10.0, read=UPSTREAM_READ_TIMEOUT)


class TurnState(str, Enum):
    VALIDATING = "validating"
    QUOTA_CHECKING = "quota_checking"
    CREDENTIAL_SELECTING = "credential_selecting"
    UPSTREAM_CALLING = "upstream_calling"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def validate_message(content, max_length: int) -> str:
    """Return the trimmed message or raise BadRequest."""
    if not isinstance(content, str):
        raise BadRequest("Message must be a string.")
    trimmed = content.strip()
    if not trimmed:
        raise BadRequest("Message cannot be empty.")
    if len(trimmed) > max_length:
        raise BadRequest(f"Message too long (max {max_length} characters).")
    return trimmed


def upstream_error_message(body: bytes) -> Optional[str]:
    """Structured ``error.message`` from an upstream error body, if there is one."""
    try:
        message = json.loads(body)["error"]["message"]
    except (ValueError, KeyError, IndexError, TypeError):
        return None
    return message if isinstance(message, str) and message.strip() else None


class ChatTurn:
    """One accepted turn with an open upstream stream."""

    def __init__(
        self,
        thread_id: str,
        user_id: str,
        model: ModelClass,
        adapter: ProviderAdapter,
        pool: CredentialPool,
        lease: CredentialLease,
        response: httpx.Response,
        session_factory: Callable[[], Session],
        counters: UsageCounters,
    ):
        self.thread_id = thread_id
        self.user_id = user_id
        self.model = model
        self.adapter = adapter
        self.pool = pool
        self.lease = lease
        self.response = response
        self.session_factory = session_factory
        self.counters = counters

        self.state = TurnState.UPSTREAM_CALLING
        self.fragments: List[str] = []
        self._stream_failed = False
        self._finalizer: Optional[asyncio.Future] = None

    @property
    def content(self) -> str:
        return "".join(self.fragments)

    def _set_state(self, state: TurnState) -> None:
        logger.debug(f"Turn on thread {self.thread_id}: {self.state.value} -> {state.value}")
        self.state = state

    def _relay_line(self, line: str) -> Optional[str]:
        payload = extract_data(line)
        if payload is None:
            return None
        fragment = self.adapter.parse_delta(payload)
        if not fragment:
            return None
        self.fragments.append(fragment)
        return format_event({"content": fragment})

    async def events(self) -> AsyncIterator[str]:
        """
        Relay the upstream stream as normalized ``{content}`` events.

        Yields:
            SSE formatted event strings, ending with ``data: [DONE]``
        """
        self._set_state(TurnState.STREAMING)
        framer = SSELineFramer()
        cancelled = False

        try:
            async for chunk in self.response.aiter_bytes():
                for line in framer.feed(chunk):
                    event = self._relay_line(line)
                    if event:
                        yield event
            for line in framer.flush():
                event = self._relay_line(line)
                if event:
                    yield event
        except (GeneratorExit, asyncio.CancelledError):
            cancelled = True
            raise
        except httpx.HTTPError as e:
            self._stream_failed = True
            logger.warning(f"Upstream stream for thread {self.thread_id} ended early: {e!r}")
        except Exception:
            self._stream_failed = True
            logger.exception(f"Unexpected error while relaying thread {self.thread_id}")
        finally:
            if self._finalizer is None:
                self._finalizer = asyncio.ensure_future(self.finalize(cancelled))
            # The caller may already be gone; finalization must still run to completion.
            await asyncio.shield(self._finalizer)

        yield DONE_EVENT

    async def finalize(self, cancelled: bool = False) -> None:
        """Persist the reply and charge usage. Only non-empty replies are charged."""
        self._set_state(TurnState.FINALIZING)

        try:
            await self.response.aclose()
        except httpx.HTTPError as e:
            logger.warning(f"Error closing upstream response for thread {self.thread_id}: {e!r}")

        content = self.content

        try:
            if content.strip():
                with self.session_factory() as db:
                    ThreadService.append_message(
                        db,
                        self.thread_id,
                        "assistant",
                        content,
                        stopped=cancelled,
                    )
                await self.pool.confirm_usage(self.lease.index)
                await self.counters.increment_usage(user_usage_key(self.user_id, self.model.value))
                logger.info(
                    f"Turn on thread {self.thread_id} stored {len(content)} chars "
                    f"via {self.pool.provider} credential #{self.lease.index}"
                    f"{' (stopped)' if cancelled else ''}"
                )
            else:
                logger.info(f"Turn on thread {self.thread_id} produced no content; nothing charged")
        except Exception:
            logger.exception(f"Failed to finalize turn on thread {self.thread_id}")
            self._set_state(TurnState.FAILED)
            return

        if cancelled:
            self._set_state(TurnState.CANCELLED)
        elif self._stream_failed:
            self._set_state(TurnState.FAILED)
        else:
            self._set_state(TurnState.COMPLETED)


class ChatRelay:
    """Accepts chat turns and opens their upstream streams."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        counters: UsageCounters,
        http_client: httpx.AsyncClient,
        pools: Optional[Dict[str, CredentialPool]] = None,
    ):
        self.session_factory = session_factory
        self.counters = counters
        self.http_client = http_client
        self.pools = pools if pools is not None else {}

    def pool_for(self, adapter: ProviderAdapter) -> CredentialPool:
        if adapter.name not in self.pools:
            self.pools[adapter.name] = CredentialPool.from_env(
                adapter.name, adapter.credential_env, self.counters
            )
        return self.pools[adapter.name]

    async def start_turn(
        self,
        user: Optional[User],
        thread_id: Optional[str],
        message,
        model: Optional[str] = None,
    ) -> ChatTurn:
        """
        Validate, check quotas, pick a credential, persist the user message and
        open the upstream stream.

        Raises:
            RelayError: for every rejection before streaming starts
        """
        # Validating
        if user is None:
            raise Unauthenticated()

        if not thread_id or message is None or message == "":
            raise BadRequest("Missing chatId or message.")

        content = validate_message(message, max_message_length(user.plan))

        with self.session_factory() as db:
            thread = ThreadService.get_thread(db, thread_id)
            if thread is not None and thread.user_id != user.id:
                raise Unauthenticated()
            last_model = thread.last_model if thread is not None else None

        try:
            model_class = ModelClass(model or last_model or ModelClass.BASIC.value)
        except ValueError:
            raise BadRequest("Unknown model.") from None

        # QuotaChecking
        window = await self.counters.hit_rate_window(
            user.id, RATE_LIMIT_REQUESTS, RATE_LIMIT_WINDOW_SECONDS
        )
        if not window.allowed:
            raise RateLimited(remaining=window.remaining, retry_after=RATE_LIMIT_WINDOW_SECONDS)

        if not can_use_model(user.plan, model_class):
            raise Forbidden()

        limit = daily_limit(user.plan, model_class)
        if limit != UNLIMITED:
            used = await self.counters.get_usage(user_usage_key(user.id, model_class.value))
            if used >= limit:
                raise QuotaExceeded(
                    f"Daily {model_class.value} limit reached ({used}/{limit}). "
                    "Upgrade your plan for more."
                )

        # CredentialSelecting
        try:
            adapter = get_adapter(model_class)
        except ValueError:
            logger.exception("Provider binding is misconfigured")
            raise InternalFailure() from None

        pool = self.pool_for(adapter)
        if pool.size == 0:
            logger.error(f"No {adapter.credential_env} credentials configured for {model_class.value}")
            raise InternalFailure()

        selection = await pool.select_credential()
        if isinstance(selection, PoolExhausted):
            raise PoolExhaustedError(selection.message)
        lease = selection

        # UpstreamCalling: the user message is stored before the upstream is contacted
        with self.session_factory() as db:
            if thread is None:
                thread = ThreadService.create_thread(db, user.id)
                logger.info(f"Created thread {thread.id} for user {user.id}")
            thread_id = thread.id
            thread = ThreadService.append_message(
                db, thread_id, "user", content, model=model_class.value
            )
            if thread is None:
                # Deleted after the ownership check above
                logger.warning(f"Thread {thread_id} disappeared before the user message was stored")
                raise BadRequest("Chat not found.")
            history = [{"role": m.role, "content": m.content} for m in thread.messages]

        upstream = adapter.build_request(build_messages(history), lease.api_key, MAX_OUTPUT_TOKENS)
        request = self.http_client.build_request(
            upstream.method,
            upstream.url,
            headers=upstream.headers,
            json=upstream.json,
            timeout=UPSTREAM_TIMEOUT,
        )

        try:
            response = await self.http_client.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.error(f"{adapter.name} request failed for thread {thread.id}: {e!r}")
            raise UpstreamUnavailable(headers={"X-Chat-Id": thread.id}) from None

        if not response.is_success:
            try:
                body = await response.aread()
            except httpx.HTTPError as e:
                logger.warning(f"Could not read {adapter.name} error body for thread {thread.id}: {e!r}")
                body = b""
            finally:
                await response.aclose()
            logger.error(
                f"{adapter.name} error for thread {thread.id}: "
                f"{response.status_code} {body[:500]!r}"
            )
            raise UpstreamUnavailable(upstream_error_message(body), headers={"X-Chat-Id": thread.id})

        return ChatTurn(
            thread_id=thread.id,
            user_id=user.id,
            model=model_class,
            adapter=adapter,
            pool=pool,
            lease=lease,
            response=response,
            session_factory=self.session_factory,
            counters=self.counters,
        )
