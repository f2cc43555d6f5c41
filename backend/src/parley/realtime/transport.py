"""Redis pub/sub transport relaying room events between API nodes."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import redis.asyncio as redis_asyncio
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

_REDIS_ERRORS: tuple[type[BaseException], ...] = (
    RedisError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)

_RECOVERY_BASE_DELAY = 0.5
_RECOVERY_MAX_DELAY = 30.0

MessageHandler = Callable[[dict[str, Any]], Awaitable[None]]

ROOMS_TOPIC = "rooms"


@dataclass(slots=True)
class BrokerConfig:
    """Configuration used for wiring the realtime transport layer."""

    redis_url: str | None
    redis_prefix: str = "parley.realtime"
    node_id: str | None = None


class TransportUnavailableError(RuntimeError):
    """Raised when the broker is not configured or cannot be reached."""


@dataclass(slots=True)
class _SubscriptionState:
    channel: str
    handler: MessageHandler
    task: asyncio.Task[Any] | None = None
    pubsub: Any | None = None
    active: bool = True


class Subscription:
    """Handle returned by :meth:`RedisTransport.subscribe`."""

    def __init__(self, transport: "RedisTransport", state: _SubscriptionState) -> None:
        self._transport = transport
        self._state = state

    @property
    def channel(self) -> str:
        return self._state.channel

    async def close(self) -> None:
        await self._transport._close_state(self._state)


class RedisTransport:
    """JSON pub/sub over Redis with automatic reader recovery."""

    def __init__(self, config: BrokerConfig) -> None:
        self._config = config
        self._redis: redis_asyncio.Redis | None = None
        self._states: list[_SubscriptionState] = []
        self._recovery_lock = asyncio.Lock()
        self._recovery_task: asyncio.Task[Any] | None = None

    @property
    def node_id(self) -> str | None:
        return self._config.node_id

    @property
    def enabled(self) -> bool:
        return bool(self._config.redis_url)

    @property
    def connected(self) -> bool:
        return self._redis is not None

    def channel_name(self, topic: str) -> str:
        prefix = self._config.redis_prefix.rstrip(".")
        return f"{prefix}.{topic}" if prefix else topic

    async def start(self) -> None:
        if not self.enabled or self._redis is not None:
            return
        client = redis_asyncio.from_url(
            self._config.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        try:
            await client.ping()
        except (*_REDIS_ERRORS, OSError) as exc:
            await client.aclose()
            raise TransportUnavailableError("Redis backend is unavailable") from exc
        self._redis = client
        logger.info("Connected to Redis realtime backend")

    async def stop(self) -> None:
        for state in list(self._states):
            await self._close_state(state)
        if self._recovery_task is not None:
            self._recovery_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._recovery_task
            self._recovery_task = None
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        if self._redis is None:
            raise TransportUnavailableError("Redis backend is not connected")
        channel = self.channel_name(topic)
        try:
            await self._redis.publish(channel, json.dumps(payload))
        except _REDIS_ERRORS as exc:
            self._trigger_recovery("publish_failed")
            raise TransportUnavailableError("Redis backend is unavailable") from exc
        logger.debug("Published realtime payload to %s", channel)

    async def subscribe(self, topic: str, handler: MessageHandler) -> Subscription:
        if self._redis is None:
            raise TransportUnavailableError("Redis backend is not connected")
        state = _SubscriptionState(channel=self.channel_name(topic), handler=handler)
        self._states.append(state)
        try:
            await self._attach_reader(state)
        except TransportUnavailableError:
            await self._close_state(state)
            self._trigger_recovery("subscribe_failed")
            raise
        return Subscription(self, state)

    async def _pause_state(self, state: _SubscriptionState) -> None:
        task, state.task = state.task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        pubsub, state.pubsub = state.pubsub, None
        if pubsub is not None:
            with contextlib.suppress(*_REDIS_ERRORS):
                await pubsub.unsubscribe(state.channel)
            with contextlib.suppress(*_REDIS_ERRORS):
                await pubsub.aclose()

    async def _close_state(self, state: _SubscriptionState) -> None:
        state.active = False
        await self._pause_state(state)
        if state in self._states:
            self._states.remove(state)

    async def _attach_reader(self, state: _SubscriptionState) -> None:
        if self._redis is None:
            raise TransportUnavailableError("Redis backend is not connected")
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(state.channel)
        except _REDIS_ERRORS as exc:
            await pubsub.aclose()
            raise TransportUnavailableError("Redis backend is unavailable") from exc
        state.pubsub = pubsub

        async def reader() -> None:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                raw = message.get("data")
                if not isinstance(raw, str):
                    continue
                try:
                    payload = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Discarded malformed realtime payload on %s", state.channel)
                    continue
                if isinstance(payload, dict):
                    await state.handler(payload)

        task = asyncio.create_task(reader(), name=f"realtime-redis-{state.channel}")
        state.task = task
        task.add_done_callback(lambda finished: self._on_reader_done(state, finished))

    def _on_reader_done(self, state: _SubscriptionState, task: asyncio.Task[Any]) -> None:
        if not state.active or task.cancelled() or state.task is not task:
            return
        state.task = None
        exc = task.exception()
        logger.warning(
            "Redis subscription reader on %s stopped; scheduling recovery",
            state.channel,
            exc_info=exc,
        )
        self._trigger_recovery("reader_stopped")

    def _trigger_recovery(self, reason: str) -> None:
        if not self.enabled:
            return
        if self._recovery_task is not None and not self._recovery_task.done():
            return
        self._recovery_task = asyncio.create_task(
            self._recovery_runner(reason), name="realtime-redis-recovery"
        )

    async def _restart(self) -> None:
        async with self._recovery_lock:
            for state in self._states:
                await self._pause_state(state)
            if self._redis is not None:
                with contextlib.suppress(*_REDIS_ERRORS):
                    await self._redis.aclose()
                self._redis = None
            await self.start()
            for state in self._states:
                if state.active:
                    await self._attach_reader(state)

    async def _recovery_runner(self, reason: str) -> None:
        attempt = 0
        while True:
            await asyncio.sleep(min(_RECOVERY_BASE_DELAY * (2**attempt), _RECOVERY_MAX_DELAY))
            try:
                await self._restart()
            except TransportUnavailableError:
                attempt += 1
                logger.warning("Redis realtime recovery attempt %d failed (%s)", attempt, reason)
                continue
            break
        logger.info("Redis realtime backend recovered after %s", reason)
        self._recovery_task = None
