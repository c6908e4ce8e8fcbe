"""Unit tests for resumable stream contexts."""

import asyncio
import uuid
from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.core.config import Settings
from app.domains.chat.context import (
    InMemoryStreamContext,
    NullStreamContext,
    RedisStreamContext,
    create_stream_context,
    stream_key,
)


async def collect(iterator):
    return [frame async for frame in iterator]


@pytest.mark.asyncio
class TestNullStreamContext:
    """Test cases for NullStreamContext."""

    async def test_unavailable_and_direct(self):
        """Test the null context streams directly and never resumes."""
        context = NullStreamContext()

        async def frames():
            yield "a\n"

        assert context.is_available is False
        assert await collect(await context.resumable_stream(uuid.uuid4(), frames)) == ["a\n"]
        assert await context.resume_existing_stream(uuid.uuid4()) is None


@pytest.mark.asyncio
class TestInMemoryStreamContext:
    """Test cases for InMemoryStreamContext."""

    async def test_live_follower_gets_every_frame(self):
        """Test the live response receives all published frames."""
        context = InMemoryStreamContext(ttl_seconds=60)

        async def frames():
            for frame in ("a\n", "b\n", "c\n"):
                yield frame

        live = await context.resumable_stream(uuid.uuid4(), frames)

        assert await collect(live) == ["a\n", "b\n", "c\n"]
        await context.teardown()

    async def test_resume_with_skip(self):
        """Test a second follower can join mid-stream and skip what it has."""
        context = InMemoryStreamContext(ttl_seconds=60)
        stream_id = uuid.uuid4()
        release = asyncio.Event()

        async def frames():
            yield "a\n"
            yield "b\n"
            await release.wait()
            yield "c\n"

        live = await context.resumable_stream(stream_id, frames)
        first = await anext(live)
        resumed = await context.resume_existing_stream(stream_id, skip=1)
        assert resumed is not None

        release.set()

        assert await collect(resumed) == ["b\n", "c\n"]
        assert [first] + await collect(live) == ["a\n", "b\n", "c\n"]
        await context.teardown()

    async def test_generation_survives_dropped_follower(self):
        """Test production continues after the live response goes away."""
        context = InMemoryStreamContext(ttl_seconds=60)
        stream_id = uuid.uuid4()
        finished = asyncio.Event()

        async def frames():
            yield "a\n"
            await asyncio.sleep(0)
            yield "b\n"
            finished.set()

        live = await context.resumable_stream(stream_id, frames)
        await anext(live)
        await live.aclose()

        await asyncio.wait_for(finished.wait(), timeout=1)
        await context.teardown()

    async def test_concluded_stream_is_not_resumable(self):
        """Test resume returns None once the generation is done, or for unknown ids."""
        context = InMemoryStreamContext(ttl_seconds=60)
        stream_id = uuid.uuid4()

        async def frames():
            yield "a\n"

        await collect(await context.resumable_stream(stream_id, frames))

        assert await context.resume_existing_stream(stream_id) is None
        assert await context.resume_existing_stream(uuid.uuid4()) is None
        await context.teardown()

    async def test_teardown_cancels_stragglers(self):
        """Test shutdown cancels generations that outlive the grace period."""
        context = InMemoryStreamContext(ttl_seconds=60)
        cancelled = asyncio.Event()

        async def frames():
            yield "a\n"
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            yield "never\n"

        live = await context.resumable_stream(uuid.uuid4(), frames)
        await anext(live)

        await context.teardown(grace_seconds=0.01)

        assert cancelled.is_set()


@pytest.mark.asyncio
class TestRedisStreamContext:
    """Test cases for RedisStreamContext with a mocked client."""

    @pytest.fixture
    def redis_client(self):
        client = AsyncMock()
        with patch("app.domains.chat.context.aioredis.from_url", return_value=client):
            yield client

    async def test_init_pings(self, redis_client):
        """Test init verifies the connection."""
        context = RedisStreamContext("redis://localhost:6379/0")

        await context.init()

        redis_client.ping.assert_awaited_once()
        assert context.is_available is True

    async def test_concluded_stream_returns_none(self, redis_client):
        """Test a stream whose last entry is the done marker is not resumed."""
        redis_client.xrevrange.return_value = [("2-0", {"event": "done"})]
        context = RedisStreamContext("redis://localhost:6379/0")
        await context.init()

        assert await context.resume_existing_stream(uuid.uuid4()) is None

    async def test_follower_reads_frames_until_done(self, redis_client):
        """Test the follower yields frame entries after skipping and stops at done."""
        stream_id = uuid.uuid4()
        redis_client.xrevrange.return_value = [("3-0", {"frame": "b\n"})]
        redis_client.xread.side_effect = [
            [(stream_key(stream_id), [("1-0", {"event": "start"}), ("2-0", {"frame": "a\n"})])],
            [],
            [(stream_key(stream_id), [("3-0", {"frame": "b\n"}), ("4-0", {"event": "done"})])],
        ]
        redis_client.exists.return_value = 1
        context = RedisStreamContext("redis://localhost:6379/0")
        await context.init()

        follower = await context.resume_existing_stream(stream_id, skip=1)

        assert await collect(follower) == ["b\n"]
        assert redis_client.xread.await_args_list[1].args[0] == {stream_key(stream_id): "2-0"}

    async def test_follower_stops_when_producer_died(self, redis_client):
        """Test a stream that never gets its done marker does not block the follower forever."""
        stream_id = uuid.uuid4()
        redis_client.xrevrange.return_value = [("2-0", {"frame": "a\n"})]
        replies = [[(stream_key(stream_id), [("1-0", {"event": "start"}), ("2-0", {"frame": "a\n"})])]]

        async def xread(*args, **kwargs):
            if replies:
                return replies.pop(0)
            await asyncio.sleep(0.02)
            return []

        redis_client.xread.side_effect = xread
        redis_client.exists.return_value = 1
        context = RedisStreamContext("redis://localhost:6379/0", block_ms=20, idle_seconds=0.05)
        await context.init()

        follower = await context.resume_existing_stream(stream_id)

        assert await asyncio.wait_for(collect(follower), timeout=5) == ["a\n"]
        assert redis_client.xread.await_count >= 3

    async def test_publish_writes_frames_and_done(self, redis_client):
        """Test published frames and the done marker are appended with a TTL."""
        stream_id = uuid.uuid4()
        context = RedisStreamContext("redis://localhost:6379/0", ttl_seconds=120)
        await context.init()

        async def frames():
            yield "a\n"

        await context._publish(stream_id, frames)

        entries = [call.args[1] for call in redis_client.xadd.await_args_list]
        assert entries == [{"frame": "a\n"}, {"event": "done"}]
        redis_client.expire.assert_awaited_with(stream_key(stream_id), 120)


@pytest.mark.asyncio
class TestCreateStreamContext:
    """Test cases for create_stream_context."""

    async def test_none_backend(self):
        """Test the default backend is the null context."""
        context = await create_stream_context(Settings(_env_file=None, resumable_stream_backend="none"))

        assert isinstance(context, NullStreamContext)

    async def test_memory_backend(self):
        """Test the memory backend needs no external service."""
        context = await create_stream_context(Settings(_env_file=None, resumable_stream_backend="memory"))

        assert isinstance(context, InMemoryStreamContext)
        assert context.is_available

    async def test_unreachable_redis_degrades(self, caplog):
        """Test an unreachable Redis disables resumable streams instead of failing."""
        client = AsyncMock()
        client.ping.side_effect = RedisConnectionError("connection refused")
        config = Settings(_env_file=None, resumable_stream_backend="redis")

        with patch("app.domains.chat.context.aioredis.from_url", return_value=client):
            context = await create_stream_context(config)

        assert isinstance(context, NullStreamContext)
        assert "Resumable streams are disabled" in caplog.text
        client.aclose.assert_awaited_once()
