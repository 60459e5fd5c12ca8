"""
针对真实 Redis 的冒烟测试，只有设置 REDSUMER_TEST_REDIS_URL 时才运行。

示例：REDSUMER_TEST_REDIS_URL=redis://127.0.0.1:6379/15 pytest -m integration
"""

from __future__ import annotations

import asyncio
import os
import uuid

import pytest
import pytest_asyncio
import redis.asyncio as redis

from redsumer.consumer import Consumer
from redsumer.producer import Producer
from redsumer.stream_config import build_consumer_config
from redsumer.types import Phase

REDIS_URL = os.getenv("REDSUMER_TEST_REDIS_URL")

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not REDIS_URL, reason="REDSUMER_TEST_REDIS_URL 未设置"),
]


@pytest_asyncio.fixture
async def redis_client():
    client = redis.from_url(REDIS_URL, decode_responses=True)
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def stream_name(redis_client):
    name = f"redsumer-test-{uuid.uuid4()}"
    yield name
    await redis_client.delete(name)


def _consumer(redis_client, stream_name: str, consumer_name: str) -> Consumer:
    config = build_consumer_config(
        stream_name,
        "redsumer-test-group",
        consumer_name=consumer_name,
        batch_size=10,
        block_ms=0,
        claim_min_idle_ms=50,
    )
    return Consumer(redis_client, config)


@pytest.mark.asyncio
async def test_consume_check_ack_against_redis(redis_client, stream_name):
    consumer = _consumer(redis_client, stream_name, "A")
    assert await consumer.prepare() is True
    assert await consumer.prepare() is False

    message_id = await Producer(redis_client, stream_name).append({"k": "v"})

    batch = await consumer.consume()
    assert batch.ids == [message_id]
    assert batch.items[0].phase is Phase.NEW

    assert (await consumer.is_still_mine(message_id)).belongs_to_caller is True
    assert (await consumer.ack(message_id)).removed is True
    assert (await consumer.ack(message_id)).removed is False


@pytest.mark.asyncio
async def test_idle_message_is_claimed_against_redis(redis_client, stream_name):
    consumer_a = _consumer(redis_client, stream_name, "A")
    consumer_b = _consumer(redis_client, stream_name, "B")
    await consumer_a.prepare()
    message_id = await Producer(redis_client, stream_name).append({"k": "v"})
    await consumer_a.consume()

    await asyncio.sleep(0.1)
    batch = await consumer_b.consume()

    assert batch.ids == [message_id]
    assert batch.items[0].phase is Phase.CLAIMED
    assert batch.items[0].delivery_count == 2
    assert (await consumer_a.is_still_mine(message_id)).current_owner == "B"
