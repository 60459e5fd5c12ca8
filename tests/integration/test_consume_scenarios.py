"""
Consumer 三段式消费在内存 Redis Streams 上的行为测试。

覆盖：端到端、claim 接管、路径优先级、idle 阈值、幂等 ACK、
同名重启读取 pending、部分批次保留。
"""

from __future__ import annotations

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from redsumer.errors import CommandError, StreamConnectionError
from redsumer.identifiers import StreamId
from redsumer.stream_config import PendingMessagesPolicy
from redsumer.types import Phase
from tests.conftest import CLAIM_MIN_IDLE_MS


@pytest.mark.asyncio
async def test_appended_ids_are_strictly_increasing(producer, clock):
    ids = []
    for i in range(5):
        ids.append(await producer.append({"n": str(i)}))
        if i % 2:
            clock.advance(1)

    assert ids == sorted(ids)
    assert len(set(ids)) == len(ids)
    assert all(isinstance(i, StreamId) for i in ids)


@pytest.mark.asyncio
async def test_end_to_end_consume_check_ack(producer, make_consumer):
    consumer_a = make_consumer("A")
    consumer_b = make_consumer("B")
    assert await consumer_a.prepare() is True

    message_id = await producer.append({"k": "v"})

    batch = await consumer_a.consume()
    assert len(batch) == 1
    item = batch.items[0]
    assert item.phase is Phase.NEW
    assert item.id == message_id
    assert dict(item.message.fields) == {"k": "v"}
    assert consumer_a.cursor == message_id

    ownership = await consumer_a.is_still_mine(message_id)
    assert ownership.belongs_to_caller is True
    assert ownership.current_owner == "A"
    assert ownership.delivery_count == 1

    ack = await consumer_a.ack(message_id)
    assert ack.removed is True

    after_a = await consumer_a.is_still_mine(message_id)
    after_b = await consumer_b.is_still_mine(str(message_id))
    assert after_a.belongs_to_caller is False
    assert after_a.current_owner is None
    assert after_b.belongs_to_caller is False


@pytest.mark.asyncio
async def test_ack_is_idempotent(producer, make_consumer):
    consumer = make_consumer("A")
    await consumer.prepare()
    message_id = await producer.append({"k": "v"})
    await consumer.consume()

    first = await consumer.ack(message_id)
    second = await consumer.ack(message_id)

    assert first.removed is True
    assert second.removed is False


@pytest.mark.asyncio
async def test_ack_of_never_delivered_id_removes_nothing(producer, make_consumer):
    consumer = make_consumer("A")
    await consumer.prepare()
    message_id = await producer.append({"k": "v"})

    outcome = await consumer.ack(message_id)

    assert outcome.removed is False


@pytest.mark.asyncio
async def test_idle_message_is_claimed_by_other_consumer(producer, make_consumer, clock):
    consumer_a = make_consumer("A")
    consumer_b = make_consumer("B")
    await consumer_a.prepare()
    await consumer_b.prepare()

    message_id = await producer.append({"k": "v"})
    first = await consumer_a.consume()
    assert first.ids == [message_id]

    clock.advance(CLAIM_MIN_IDLE_MS + 1)
    batch = await consumer_b.consume()

    assert batch.ids == [message_id]
    claimed = batch.items[0]
    assert claimed.phase is Phase.CLAIMED
    assert claimed.delivery_count == 2

    ownership_a = await consumer_a.is_still_mine(message_id)
    assert ownership_a.belongs_to_caller is False
    assert ownership_a.current_owner == "B"
    assert ownership_a.delivery_count == 2
    assert (await consumer_b.is_still_mine(message_id)).belongs_to_caller is True


@pytest.mark.asyncio
async def test_claim_respects_min_idle_threshold(producer, make_consumer, clock):
    consumer_a = make_consumer("A")
    consumer_b = make_consumer("B")
    await consumer_a.prepare()

    message_id = await producer.append({"k": "v"})
    await consumer_a.consume()

    clock.advance(CLAIM_MIN_IDLE_MS - 1)
    assert len(await consumer_b.consume()) == 0
    assert (await consumer_a.is_still_mine(message_id)).belongs_to_caller is True

    clock.advance(2)
    batch = await consumer_b.consume()
    assert batch.ids == [message_id]
    assert batch.items[0].phase is Phase.CLAIMED


@pytest.mark.asyncio
async def test_phase_priority_new_then_pending_then_claimed(producer, make_consumer, clock):
    consumer_a = make_consumer("A", batch_size=3)
    consumer_c = make_consumer("C", batch_size=1)
    await consumer_a.prepare()

    own_pending = await producer.append({"n": "1"})
    assert (await consumer_a.consume()).ids == [own_pending]

    others_pending = await producer.append({"n": "2"})
    assert (await consumer_c.consume()).ids == [others_pending]

    clock.advance(CLAIM_MIN_IDLE_MS + 1)
    fresh = await producer.append({"n": "3"})

    batch = await consumer_a.consume()

    assert batch.ids == [fresh, own_pending, others_pending]
    assert [item.phase for item in batch] == [Phase.NEW, Phase.PENDING, Phase.CLAIMED]


@pytest.mark.asyncio
async def test_small_batch_stops_after_new_phase(producer, make_consumer, fake_redis):
    consumer = make_consumer("A", batch_size=1)
    await consumer.prepare()
    first = await producer.append({"n": "1"})
    await producer.append({"n": "2"})

    batch = await consumer.consume()

    assert batch.ids == [first]
    commands = [call[0] for call in fake_redis.calls]
    assert "xpending_range" not in commands
    assert "xclaim" not in commands


@pytest.mark.asyncio
async def test_new_messages_are_not_redelivered_by_pending_phase(producer, make_consumer):
    consumer = make_consumer("A")
    await consumer.prepare()
    message_id = await producer.append({"k": "v"})

    batch = await consumer.consume()

    assert batch.ids == [message_id]
    ownership = await consumer.is_still_mine(message_id)
    assert ownership.delivery_count == 1


@pytest.mark.asyncio
async def test_restarted_consumer_pages_through_own_pending(producer, make_consumer):
    consumer = make_consumer("A")
    await consumer.prepare()
    ids = [await producer.append({"n": str(i)}) for i in range(3)]
    assert (await consumer.consume()).ids == ids

    restarted = make_consumer(
        "A",
        batch_size=2,
        new=None,
        pending=PendingMessagesPolicy(count=2),
        claim=None,
    )
    assert await restarted.prepare() is False

    assert (await restarted.consume()).ids == ids[:2]
    assert (await restarted.consume()).ids == ids[2:]
    wrapped = await restarted.consume()
    assert wrapped.ids == ids[:2]
    assert [item.phase for item in wrapped] == [Phase.PENDING, Phase.PENDING]


@pytest.mark.asyncio
async def test_deleted_pending_entries_are_skipped(producer, make_consumer, fake_redis):
    consumer = make_consumer("A")
    await consumer.prepare()
    message_id = await producer.append({"k": "v"})
    await consumer.consume()
    fake_redis.delete_entry("orders-stream", str(message_id))

    restarted = make_consumer("A", new=None, claim=None)
    batch = await restarted.consume()

    assert len(batch) == 0


@pytest.mark.asyncio
async def test_empty_stream_returns_empty_batch(make_consumer):
    consumer = make_consumer("A")
    await consumer.prepare()

    batch = await consumer.consume()

    assert len(batch) == 0
    assert not batch


@pytest.mark.asyncio
async def test_missing_group_is_a_command_error(producer, make_consumer):
    consumer = make_consumer("A")
    await producer.append({"k": "v"})

    with pytest.raises(CommandError) as exc_info:
        await consumer.consume()

    assert "NOGROUP" in str(exc_info.value)
    assert exc_info.value.batch is not None
    assert len(exc_info.value.batch) == 0


@pytest.mark.asyncio
async def test_failed_phase_keeps_partial_batch(producer, make_consumer, fake_redis):
    consumer = make_consumer("A")
    await consumer.prepare()
    message_id = await producer.append({"k": "v"})
    fake_redis.fail_on("xpending_range", RedisConnectionError("connection reset"))

    with pytest.raises(StreamConnectionError) as exc_info:
        await consumer.consume()

    partial = exc_info.value.batch
    assert partial.ids == [message_id]
    assert partial.items[0].phase is Phase.NEW
    assert isinstance(exc_info.value.__cause__, RedisConnectionError)
