"""Producer：向 stream 追加一条消息并返回 Redis 分配的 ID。"""

from __future__ import annotations

from typing import Mapping

import redis.asyncio as redis
from loguru import logger

from redsumer.errors import CommandError, EmptyReplyError, translate_redis_errors
from redsumer.identifiers import StreamId
from redsumer.stream_config import _require_name
from redsumer.types import to_text


class Producer:
    """单命令（XADD）追加消息，不做内部重试。"""

    def __init__(
        self,
        redis_client: redis.Redis,
        stream_name: str,
        *,
        maxlen: int | None = None,
        approximate: bool = True,
    ) -> None:
        _require_name("stream_name", stream_name)
        if maxlen is not None and maxlen <= 0:
            raise ValueError(f"maxlen 必须是正整数，当前值: {maxlen!r}")

        self.redis_client = redis_client
        self.stream_name = stream_name
        self.maxlen = maxlen
        self.approximate = approximate

    async def append(self, fields: Mapping[str, str]) -> StreamId:
        """追加一条消息，ID 由服务端按当前时间生成（``*``）。

        stream 不存在时会被自动创建。
        """

        if not fields:
            raise CommandError("消息字段不能为空")
        if any(not key for key in fields):
            raise CommandError("消息字段名不能为空")

        with translate_redis_errors("XADD"):
            raw_id = await self.redis_client.xadd(
                self.stream_name,
                dict(fields),
                maxlen=self.maxlen,
                approximate=self.approximate,
            )

        if raw_id is None:
            raise EmptyReplyError("XADD 没有返回消息 ID")
        try:
            message_id = StreamId.parse(to_text(raw_id))
        except ValueError as exc:
            raise EmptyReplyError(f"无法解析 XADD 返回的 ID: {raw_id!r}") from exc

        logger.debug("消息已写入 stream: stream={}, id={}", self.stream_name, message_id)
        return message_id
