"""清理僵尸消费者。

背景：
- Redis Stream Consumer Group 中，历史进程退出后可能残留消费者名。
- 如果消费者长期 idle 且没有 pending 消息，可视为可回收对象。
- 多进程部署时，当前在线消费者不能被误删。
- 仍有 pending 消息的消费者不删除：这些消息会由其他消费者通过 claim 接管。
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

import redis.asyncio as redis
from loguru import logger

from redsumer.errors import translate_redis_errors
from redsumer.stream_information import get_consumers_info


def _is_reclaimable(
    info: Mapping[str, Any], *, idle_threshold_ms: int, pending_threshold: int
) -> bool:
    # XGROUP DELCONSUMER 会连同 pending 记录一起删除，所以 pending 必须足够少。
    return (
        int(info.get("pending", 0)) <= pending_threshold
        and int(info.get("idle", 0)) > idle_threshold_ms
    )


async def cleanup_idle_consumers(
    redis_client: redis.Redis,
    *,
    stream_name: str,
    group_name: str,
    current_consumer_names: Iterable[str],
    idle_threshold_ms: int,
    pending_threshold: int = 0,
) -> int:
    """删除 group 内 idle 超过 ``idle_threshold_ms`` 的消费者，返回删除数量。

    ``current_consumer_names`` 中的消费者无论状态如何都会保留；
    pending 数超过 ``pending_threshold`` 的消费者也会保留。
    """

    keep = frozenset(current_consumer_names)
    stale = [
        info
        for info in await get_consumers_info(redis_client, stream_name, group_name)
        if info.get("name") is not None
        and info["name"] not in keep
        and _is_reclaimable(
            info,
            idle_threshold_ms=idle_threshold_ms,
            pending_threshold=pending_threshold,
        )
    ]

    for info in stale:
        with translate_redis_errors("XGROUP DELCONSUMER"):
            await redis_client.xgroup_delconsumer(stream_name, group_name, info["name"])
        logger.info(
            "删除僵尸消费者: group={}, consumer={}, idle={}ms, pending={}",
            group_name,
            info["name"],
            info.get("idle"),
            info.get("pending"),
        )
    return len(stale)
