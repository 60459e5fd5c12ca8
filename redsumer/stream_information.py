"""stream / consumer group / consumer 的运行信息（XINFO）。"""

from __future__ import annotations

from typing import Any

import redis.asyncio as redis

from redsumer.errors import EmptyReplyError, translate_redis_errors
from redsumer.types import to_text


def _normalize(info: Any) -> Any:
    if isinstance(info, dict):
        return {to_text(k): _normalize(v) for k, v in info.items()}
    if isinstance(info, (list, tuple)):
        return [_normalize(item) for item in info]
    if isinstance(info, bytes):
        return to_text(info)
    return info


def _decode(info: Any, command: str) -> Any:
    try:
        return _normalize(info)
    except UnicodeDecodeError as exc:
        raise EmptyReplyError(f"无法解析 {command} 返回: {info!r}") from exc


async def get_stream_info(redis_client: redis.Redis, stream_name: str) -> dict[str, Any]:
    with translate_redis_errors("XINFO STREAM"):
        info = await redis_client.xinfo_stream(stream_name)
    return _decode(info, "XINFO STREAM")


async def get_groups_info(redis_client: redis.Redis, stream_name: str) -> list[dict[str, Any]]:
    with translate_redis_errors("XINFO GROUPS"):
        groups = await redis_client.xinfo_groups(stream_name)
    return _decode(groups, "XINFO GROUPS")


async def get_consumers_info(
    redis_client: redis.Redis, stream_name: str, group_name: str
) -> list[dict[str, Any]]:
    """返回 group 内每个消费者的 name / pending / idle 等信息。"""

    with translate_redis_errors("XINFO CONSUMERS"):
        consumers = await redis_client.xinfo_consumers(stream_name, group_name)
    return _decode(consumers, "XINFO CONSUMERS")
