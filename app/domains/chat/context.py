"""Resumable stream transport.

A stream context runs a turn's frame generator in a background task and
publishes every frame to a buffer keyed by stream id. The live response and any
later resume request are both followers of that buffer, so a client that drops
its connection can pick the generation up again.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Coroutine
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.core.config import Settings, StreamBackendEnum, settings

logger = logging.getLogger(__name__)

FrameFactory = Callable[[], AsyncIterator[str]]

KEY_PREFIX = "resumable-stream"


def stream_key(stream_id: UUID | str) -> str:
    return f"{KEY_PREFIX}:{stream_id}"


class StreamContext:
    """Base transport. Subclasses provide the buffer primitives."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    @property
    def is_available(self) -> bool:
        return True

    async def init(self) -> None:
        pass

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run a coroutine in a task owned by this context."""
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def teardown(self, grace_seconds: float | None = None) -> None:
        """Let background generations finish, cancel stragglers, release resources."""
        grace = settings.shutdown_grace_seconds if grace_seconds is None else grace_seconds
        tasks = list(self._tasks)
        if tasks:
            logger.info(f"Waiting up to {grace}s for {len(tasks)} background stream(s)")
            _, pending = await asyncio.wait(tasks, timeout=grace)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(f"Cancelled {len(pending)} unfinished background stream(s)")
                await asyncio.gather(*pending, return_exceptions=True)
        await self._close()

    async def resumable_stream(self, stream_id: UUID, make_stream: FrameFactory) -> AsyncIterator[str]:
        """Start publishing ``make_stream()`` under ``stream_id`` and follow it."""
        await self._create(stream_id)
        self.spawn(self._publish(stream_id, make_stream))
        return self._follow(stream_id, 0)

    async def resume_existing_stream(self, stream_id: UUID, skip: int = 0) -> AsyncIterator[str] | None:
        """Follower for a live stream, or None when it is unknown or concluded."""
        if not await self._is_live(stream_id):
            return None
        return self._follow(stream_id, skip)

    async def _publish(self, stream_id: UUID, make_stream: FrameFactory) -> None:
        try:
            async with aclosing(make_stream()) as frames:
                async for frame in frames:
                    await self._append(stream_id, frame)
        except Exception:
            logger.exception(f"Background stream {stream_id} failed")
        finally:
            await self._finish(stream_id)

    async def _create(self, stream_id: UUID) -> None:
        raise NotImplementedError

    async def _append(self, stream_id: UUID, frame: str) -> None:
        raise NotImplementedError

    async def _finish(self, stream_id: UUID) -> None:
        raise NotImplementedError

    async def _is_live(self, stream_id: UUID) -> bool:
        raise NotImplementedError

    def _follow(self, stream_id: UUID, skip: int) -> AsyncIterator[str]:
        raise NotImplementedError

    async def _close(self) -> None:
        pass


class NullStreamContext(StreamContext):
    """No resumable transport: responses drive their generators directly."""

    @property
    def is_available(self) -> bool:
        return False

    async def resumable_stream(self, stream_id: UUID, make_stream: FrameFactory) -> AsyncIterator[str]:
        return make_stream()

    async def resume_existing_stream(self, stream_id: UUID, skip: int = 0) -> AsyncIterator[str] | None:
        return None


@dataclass
class _Buffer:
    expires_at: float
    frames: list[str] = field(default_factory=list)
    done: bool = False
    condition: asyncio.Condition = field(default_factory=asyncio.Condition)


class InMemoryStreamContext(StreamContext):
    """Single-process buffers. Resumption only works against the same worker."""

    def __init__(self, ttl_seconds: int | None = None):
        super().__init__()
        self.ttl_seconds = ttl_seconds or settings.stream_ttl_seconds
        self._buffers: dict[str, _Buffer] = {}

    def _evict_expired(self) -> None:
        now = asyncio.get_running_loop().time()
        expired = [key for key, buffer in self._buffers.items() if buffer.done and buffer.expires_at <= now]
        for key in expired:
            del self._buffers[key]

    async def _create(self, stream_id: UUID) -> None:
        self._evict_expired()
        expires_at = asyncio.get_running_loop().time() + self.ttl_seconds
        self._buffers[stream_key(stream_id)] = _Buffer(expires_at=expires_at)

    async def _append(self, stream_id: UUID, frame: str) -> None:
        buffer = self._buffers.get(stream_key(stream_id))
        if buffer is None:
            return
        async with buffer.condition:
            buffer.frames.append(frame)
            buffer.condition.notify_all()

    async def _finish(self, stream_id: UUID) -> None:
        buffer = self._buffers.get(stream_key(stream_id))
        if buffer is None:
            return
        async with buffer.condition:
            buffer.done = True
            buffer.condition.notify_all()

    async def _is_live(self, stream_id: UUID) -> bool:
        self._evict_expired()
        buffer = self._buffers.get(stream_key(stream_id))
        return buffer is not None and not buffer.done

    async def _follow(self, stream_id: UUID, skip: int) -> AsyncIterator[str]:
        buffer = self._buffers.get(stream_key(stream_id))
        if buffer is None:
            return

        index = skip
        while True:
            async with buffer.condition:
                await buffer.condition.wait_for(lambda: len(buffer.frames) > index or buffer.done)
                batch = buffer.frames[index:]
                done = buffer.done
            index += len(batch)
            for frame in batch:
                yield frame
            if done:
                return

    async def _close(self) -> None:
        self._buffers.clear()


class RedisStreamContext(StreamContext):
    """Redis Streams transport shared by every worker.

    Each generation is a stream ``resumable-stream:<id>`` holding a start
    marker, one entry per frame, and a done marker. Keys expire after the
    configured TTL. A follower stops after ``idle_seconds`` without a new
    entry; a worker that died mid-generation never writes the done marker.
    """

    START = "start"
    DONE = "done"

    def __init__(
        self,
        url: str,
        ttl_seconds: int | None = None,
        block_ms: int = 1000,
        idle_seconds: float | None = None,
    ):
        super().__init__()
        self.url = url
        self.ttl_seconds = ttl_seconds or settings.stream_ttl_seconds
        self.block_ms = block_ms
        self.idle_seconds = idle_seconds or settings.chat_max_duration_seconds
        self._redis: aioredis.Redis | None = None

    @property
    def is_available(self) -> bool:
        return self._redis is not None

    async def init(self) -> None:
        client = aioredis.from_url(self.url, decode_responses=True)
        try:
            await client.ping()
        except (RedisError, OSError):
            await client.aclose()
            raise
        self._redis = client
        logger.info("Resumable streams backed by Redis")

    async def _create(self, stream_id: UUID) -> None:
        key = stream_key(stream_id)
        await self._redis.xadd(key, {"event": self.START})
        await self._redis.expire(key, self.ttl_seconds)

    async def _append(self, stream_id: UUID, frame: str) -> None:
        await self._redis.xadd(stream_key(stream_id), {"frame": frame})

    async def _finish(self, stream_id: UUID) -> None:
        key = stream_key(stream_id)
        try:
            await self._redis.xadd(key, {"event": self.DONE})
            await self._redis.expire(key, self.ttl_seconds)
        except RedisError as e:
            logger.warning(f"Failed to mark stream {stream_id} as done: {str(e)}")

    async def _is_live(self, stream_id: UUID) -> bool:
        entries = await self._redis.xrevrange(stream_key(stream_id), count=1)
        if not entries:
            return False
        _, fields = entries[0]
        return fields.get("event") != self.DONE

    async def _follow(self, stream_id: UUID, skip: int) -> AsyncIterator[str]:
        key = stream_key(stream_id)
        loop = asyncio.get_running_loop()
        last_id = "0-0"
        seen = 0
        last_entry_at = loop.time()
        while True:
            response = await self._redis.xread({key: last_id}, count=100, block=self.block_ms)
            if not response:
                if not await self._redis.exists(key):
                    return
                if loop.time() - last_entry_at > self.idle_seconds:
                    logger.warning(f"Stream {stream_id} idle for {self.idle_seconds}s, stopping follower")
                    return
                continue
            last_entry_at = loop.time()
            for _, entries in response:
                for entry_id, fields in entries:
                    last_id = entry_id
                    if fields.get("event") == self.DONE:
                        return
                    if "frame" not in fields:
                        continue
                    seen += 1
                    if seen > skip:
                        yield fields["frame"]

    async def _close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


async def create_stream_context(config: Settings = settings) -> StreamContext:
    """Build and initialize the configured transport.

    A Redis backend that cannot be reached degrades to the null context so the
    API keeps serving non-resumable streams.
    """
    backend = config.resumable_stream_backend
    if backend == StreamBackendEnum.memory:
        context = InMemoryStreamContext(config.stream_ttl_seconds)
    elif backend == StreamBackendEnum.redis:
        context = RedisStreamContext(config.redis_url, config.stream_ttl_seconds)
    else:
        logger.info("Resumable streams are disabled")
        return NullStreamContext()

    try:
        await context.init()
    except (RedisError, OSError) as e:
        logger.warning(f"Resumable streams are disabled: {str(e)}")
        return NullStreamContext()
    return context
