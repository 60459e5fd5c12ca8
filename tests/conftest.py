"""
redsumer 测试的公共配置与 fixture：共享一个内存版 Redis Streams 和可控时钟。
"""

from __future__ import annotations

from typing import Callable

import pytest

from redsumer.consumer import Consumer
from redsumer.producer import Producer
from redsumer.stream_config import (
    ClaimPolicy,
    ConsumerConfig,
    GroupIdentity,
    NewMessagesPolicy,
    PendingMessagesPolicy,
)
from tests.fake_redis import FakeClock, FakeStreamsRedis

STREAM = "orders-stream"
GROUP = "orders-group"
CLAIM_MIN_IDLE_MS = 60_000


def make_config(
    consumer_name: str,
    *,
    batch_size: int = 10,
    new: NewMessagesPolicy | None = NewMessagesPolicy(count=10, block_ms=0),
    pending: PendingMessagesPolicy | None = PendingMessagesPolicy(count=10),
    claim: ClaimPolicy | None = ClaimPolicy(count=10, min_idle_ms=CLAIM_MIN_IDLE_MS),
    since_id: str = "0",
) -> ConsumerConfig:
    return ConsumerConfig(
        identity=GroupIdentity(
            stream_name=STREAM,
            group_name=GROUP,
            consumer_name=consumer_name,
        ),
        batch_size=batch_size,
        new=new,
        pending=pending,
        claim=claim,
        since_id=since_id,
        max_wait_for_stream_s=0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis(clock: FakeClock) -> FakeStreamsRedis:
    return FakeStreamsRedis(clock)


@pytest.fixture
def producer(fake_redis: FakeStreamsRedis) -> Producer:
    return Producer(fake_redis, STREAM)


@pytest.fixture
def make_consumer(fake_redis: FakeStreamsRedis) -> Callable[..., Consumer]:
    """按消费者名构造共享同一个 fake Redis 的 Consumer。"""

    def _make(consumer_name: str, **overrides) -> Consumer:
        return Consumer(fake_redis, make_config(consumer_name, **overrides))

    return _make
