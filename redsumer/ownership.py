"""消息归属检查。

背景：
- consume 拿到消息之后、真正执行有副作用的业务之前，消息可能已经被其他消费者 claim。
- 这里按单个 ID 查询 group 的 pending 列表，给调用方一个“第二意见”。
- 结果只是快照，检查与 ACK 之间仍然存在竞争窗口，这是无中心协调设计本身的限制。
"""

from __future__ import annotations

import redis.asyncio as redis
from loguru import logger

from redsumer.errors import EmptyReplyError, translate_redis_errors
from redsumer.identifiers import StreamId
from redsumer.types import OwnershipOutcome, PendingEntry


async def lookup_pending_entry(
    redis_client: redis.Redis,
    *,
    stream_name: str,
    group_name: str,
    message_id: StreamId,
) -> PendingEntry | None:
    """查询单个 ID 的 pending 记录，不存在时返回 None。"""

    with translate_redis_errors("XPENDING"):
        reply = await redis_client.xpending_range(
            stream_name,
            group_name,
            min=str(message_id),
            max=str(message_id),
            count=1,
        )

    if not reply:
        return None
    if len(reply) > 1:
        raise EmptyReplyError(f"同一个 ID 查询到 {len(reply)} 条 pending 记录: {message_id}")

    try:
        entry = PendingEntry.from_reply(reply[0])
    except (KeyError, TypeError, ValueError) as exc:
        raise EmptyReplyError(f"无法解析 XPENDING 返回: {reply!r}") from exc
    if entry.id != message_id:
        raise EmptyReplyError(f"XPENDING 返回了其他 ID: {entry.id} != {message_id}")
    return entry


async def check_ownership(
    redis_client: redis.Redis,
    *,
    stream_name: str,
    group_name: str,
    consumer_name: str,
    message_id: StreamId,
) -> OwnershipOutcome:
    """判断消息当前是否仍归属于 ``consumer_name``。"""

    entry = await lookup_pending_entry(
        redis_client,
        stream_name=stream_name,
        group_name=group_name,
        message_id=message_id,
    )
    if entry is None:
        # 没有 pending 记录：消息已经被某个消费者 ACK。
        logger.debug("消息 {} 不在 pending 列表中", message_id)
        return OwnershipOutcome(
            id=message_id,
            current_owner=None,
            idle_ms=None,
            delivery_count=None,
            belongs_to_caller=False,
        )

    belongs = entry.consumer == consumer_name
    if not belongs:
        logger.debug(
            "消息 {} 已归属其他消费者: owner={}, delivery_count={}",
            message_id,
            entry.consumer,
            entry.delivery_count,
        )
    return OwnershipOutcome(
        id=message_id,
        current_owner=entry.consumer,
        idle_ms=entry.idle_ms,
        delivery_count=entry.delivery_count,
        belongs_to_caller=belongs,
    )
