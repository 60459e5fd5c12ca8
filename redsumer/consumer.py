"""Consumer：new + pending + claim 三段式消费。

核心点：
1. new 路径优先：新消息代表新的工作，优先读取可以避免积压无限增长。
2. pending 路径其次：本消费者名下未 ACK 的消息（例如进程崩溃后以同名重启），
   没有被其他消费者碰过，重新处理基本安全。
3. claim 路径最后：接管其他消费者 idle 超过阈值的消息，风险最高，只用来补足容量。
   min idle time 是宽限期，正在正常处理的消费者应当在此之前完成并 ACK。

每次 consume 只有 new 路径可能阻塞等待；pending 和 claim 都立即返回。
单个实例不是并发安全的：游标和请求状态都不允许多个调用方同时修改。
多个实例之间没有任何进程内共享状态，协调完全交给 Redis 的 pending 列表和 claim。
"""

from __future__ import annotations

import asyncio
from types import TracebackType
from typing import Any, Iterable

import redis.asyncio as redis
from loguru import logger

from redsumer.errors import (
    CommandError,
    EmptyReplyError,
    RedsumerError,
    translate_redis_errors,
)
from redsumer.identifiers import (
    BEGINNING,
    NEVER_DELIVERED,
    ONLY_FUTURE,
    RANGE_MAX,
    RANGE_MIN,
    StreamId,
)
from redsumer.ownership import check_ownership
from redsumer.stream_config import ConsumerConfig
from redsumer.types import (
    AckOutcome,
    ConsumeBatch,
    ConsumedMessage,
    Message,
    OwnershipOutcome,
    PendingEntry,
    Phase,
    to_text,
)


class Consumer:
    """Redis Stream consumer group 中的一个消费者。"""

    def __init__(
        self,
        redis_client: redis.Redis,
        config: ConsumerConfig,
        *,
        owns_connection: bool = False,
    ) -> None:
        self.redis_client = redis_client
        self.config = config
        self.owns_connection = owns_connection

        self._cursor: StreamId | None = (
            None if config.since_id == ONLY_FUTURE else StreamId.parse(config.since_id)
        )
        self._pending_cursor: StreamId = BEGINNING

    @property
    def stream_name(self) -> str:
        return self.config.identity.stream_name

    @property
    def group_name(self) -> str:
        return self.config.identity.group_name

    @property
    def consumer_name(self) -> str:
        return self.config.identity.consumer_name

    @property
    def cursor(self) -> StreamId | None:
        """最近一次 new 路径读到的最大 ID；以 ``$`` 启动且尚未读到消息时为 None。"""

        return self._cursor

    async def __aenter__(self) -> Consumer:
        await self.prepare()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def prepare(self) -> bool:
        """等待 stream 就绪并确保 consumer group 存在。

        返回 True 表示本次新建了 group，False 表示 group 已存在。
        """

        if self.config.max_wait_for_stream_s > 0:
            await self.wait_for_stream()
        return await self.ensure_group(mkstream=self.config.max_wait_for_stream_s == 0)

    async def wait_for_stream(self) -> None:
        """按 1, 2, 4... 秒退避等待 stream 出现，超过上限后报错。"""

        step = 0
        while True:
            with translate_redis_errors("EXISTS"):
                exists = await self.redis_client.exists(self.stream_name)
            if exists:
                logger.debug("stream 已就绪: {}", self.stream_name)
                return

            wait_seconds = 2**step
            if wait_seconds > self.config.max_wait_for_stream_s:
                raise CommandError(f"stream 不存在: {self.stream_name}")
            logger.warning("stream {} 尚未就绪，{} 秒后重试", self.stream_name, wait_seconds)
            await asyncio.sleep(wait_seconds)
            step += 1

    async def ensure_group(self, *, mkstream: bool = False) -> bool:
        """创建 consumer group，已存在（BUSYGROUP）不视为错误。"""

        try:
            with translate_redis_errors("XGROUP CREATE"):
                await self.redis_client.xgroup_create(
                    self.stream_name,
                    self.group_name,
                    id=self.config.since_id,
                    mkstream=mkstream,
                )
        except CommandError as exc:
            if "BUSYGROUP" in str(exc):
                logger.debug("consumer group 已存在: {}", self.group_name)
                return False
            raise

        logger.info(
            "consumer group 创建成功: stream={}, group={}, since_id={}",
            self.stream_name,
            self.group_name,
            self.config.since_id,
        )
        return True

    async def consume(self) -> ConsumeBatch:
        """按 new -> pending -> claim 的顺序组装一批消息。

        每条路径只读取剩余容量，批次满了就跳过后续路径。某一路径失败时，
        抛出的 ``RedsumerError`` 的 ``batch`` 属性保存失败前已经取到的消息。
        """

        items: list[ConsumedMessage] = []
        config = self.config

        try:
            if config.new is not None:
                count = min(config.new.count, config.batch_size)
                items.extend(await self._read_new_messages(count, config.new.block_ms))

            remaining = config.batch_size - len(items)
            if config.pending is not None and remaining > 0:
                count = min(config.pending.count, remaining)
                # 本次 new 路径读到的消息也在 pending 列表里，只读取比它们更早的部分。
                before = min((item.id for item in items), default=None)
                items.extend(
                    _without_seen(
                        await self._read_own_pending_messages(count, before), items
                    )
                )

            remaining = config.batch_size - len(items)
            if config.claim is not None and remaining > 0:
                count = min(config.claim.count, remaining)
                items.extend(
                    await self._claim_idle_messages(
                        count, config.claim.min_idle_ms, {item.id for item in items}
                    )
                )
        except RedsumerError as exc:
            exc.batch = ConsumeBatch(tuple(items))
            logger.debug("consume 中途失败，保留已读取的 {} 条消息: {}", len(items), exc)
            raise

        batch = ConsumeBatch(tuple(items))
        if batch:
            logger.debug(
                "consume 完成: new={}, pending={}, claimed={}",
                len(batch.by_phase(Phase.NEW)),
                len(batch.by_phase(Phase.PENDING)),
                len(batch.by_phase(Phase.CLAIMED)),
            )
        return batch

    async def is_still_mine(self, message_id: StreamId | str) -> OwnershipOutcome:
        """处理副作用之前再次确认消息仍归属于当前消费者（快照，非锁）。

        ``message_id`` 不是合法的 stream id 时抛出 ``CommandError``，不会访问 Redis。
        """

        return await check_ownership(
            self.redis_client,
            stream_name=self.stream_name,
            group_name=self.group_name,
            consumer_name=self.consumer_name,
            message_id=_parse_message_id(message_id),
        )

    async def ack(self, message_id: StreamId | str) -> AckOutcome:
        """ACK 一条消息；重复 ACK 返回 removed=False 而不是报错。

        ``message_id`` 不是合法的 stream id 时抛出 ``CommandError``，不会访问 Redis。
        """

        message_id = _parse_message_id(message_id)
        with translate_redis_errors("XACK"):
            removed = await self.redis_client.xack(
                self.stream_name, self.group_name, str(message_id)
            )

        if removed not in (0, 1):
            raise EmptyReplyError(f"无法解析 XACK 返回: {removed!r}")
        if not removed:
            logger.debug("消息 {} 没有 pending 记录，无需 ACK", message_id)
        return AckOutcome(id=message_id, removed=bool(removed))

    async def close(self) -> None:
        if self.owns_connection:
            await self.redis_client.aclose()

    async def _read_new_messages(self, count: int, block_ms: int) -> list[ConsumedMessage]:
        with translate_redis_errors("XREADGROUP"):
            reply = await self.redis_client.xreadgroup(
                self.group_name,
                self.consumer_name,
                {self.stream_name: NEVER_DELIVERED},
                count=count,
                # BLOCK 0 会永久阻塞，0 表示不阻塞。
                block=block_ms or None,
            )

        messages = self._parse_read_reply(reply)
        if messages:
            self._cursor = max(message.id for message in messages)
        logger.debug("new 路径读取到 {} 条消息", len(messages))
        return [ConsumedMessage(message, Phase.NEW) for message in messages]

    async def _read_own_pending_messages(
        self, count: int, before: StreamId | None
    ) -> list[ConsumedMessage]:
        exhausted = False
        if before is not None:
            available = await self._count_own_pending_before(count, before)
            exhausted = available < count
            if available == 0:
                self._pending_cursor = BEGINNING
                return []
            count = available

        with translate_redis_errors("XREADGROUP"):
            reply = await self.redis_client.xreadgroup(
                self.group_name,
                self.consumer_name,
                {self.stream_name: str(self._pending_cursor)},
                count=count,
            )

        entries = self._extract_entries(reply)
        if exhausted or len(entries) < count:
            # 本消费者的 pending 列表已经翻到底，下次从头开始。
            self._pending_cursor = BEGINNING
        else:
            try:
                self._pending_cursor = StreamId.parse(to_text(entries[-1][0]))
            except (TypeError, ValueError) as exc:
                raise EmptyReplyError(f"无法解析 stream 消息 ID: {entries[-1]!r}") from exc

        messages = self._to_messages(entries)
        if before is not None:
            messages = [message for message in messages if message.id < before]
        logger.debug("pending 路径读取到 {} 条消息", len(messages))
        return [ConsumedMessage(message, Phase.PENDING) for message in messages]

    async def _count_own_pending_before(self, count: int, before: StreamId) -> int:
        """统计游标之后、``before`` 之前属于本消费者的 pending 记录数（最多 count 条）。"""

        lower = (
            RANGE_MIN
            if self._pending_cursor == BEGINNING
            else f"({self._pending_cursor}"
        )
        with translate_redis_errors("XPENDING"):
            reply = await self.redis_client.xpending_range(
                self.stream_name,
                self.group_name,
                min=lower,
                max=f"({before}",
                count=count,
                consumername=self.consumer_name,
            )
        return len(reply or [])

    async def _claim_idle_messages(
        self, count: int, min_idle_ms: int, exclude: set[StreamId]
    ) -> list[ConsumedMessage]:
        with translate_redis_errors("XPENDING"):
            reply = await self.redis_client.xpending_range(
                self.stream_name,
                self.group_name,
                min=RANGE_MIN,
                max=RANGE_MAX,
                count=count + len(exclude),
                idle=min_idle_ms,
            )

        try:
            scanned = [PendingEntry.from_reply(raw) for raw in reply or []]
        except (KeyError, TypeError, ValueError) as exc:
            raise EmptyReplyError(f"无法解析 XPENDING 返回: {reply!r}") from exc
        candidates = [entry for entry in scanned if entry.id not in exclude][:count]
        if not candidates:
            return []

        with translate_redis_errors("XCLAIM"):
            claimed = await self.redis_client.xclaim(
                self.stream_name,
                self.group_name,
                self.consumer_name,
                min_idle_ms,
                [str(entry.id) for entry in candidates],
            )

        scanned_by_id = {entry.id: entry for entry in candidates}
        result: list[ConsumedMessage] = []
        for message in self._to_messages(claimed or []):
            previous = scanned_by_id.get(message.id)
            delivery_count = previous.delivery_count + 1 if previous else None
            logger.info(
                "接管超时消息: id={}, from={}, delivery_count={}",
                message.id,
                previous.consumer if previous else None,
                delivery_count,
            )
            result.append(ConsumedMessage(message, Phase.CLAIMED, delivery_count))
        return result

    def _parse_read_reply(self, reply: Any) -> list[Message]:
        return self._to_messages(self._extract_entries(reply))

    def _extract_entries(self, reply: Any) -> list[tuple[Any, Any]]:
        """从 XREADGROUP 返回中取出当前 stream 的 (id, fields) 列表。

        兼容 RESP2（``[[stream, entries], ...]``）和 RESP3（``{stream: entries}``）。
        阻塞超时返回 None / 空列表，视为没有消息。
        """

        if not reply:
            return []
        if isinstance(reply, dict):
            streams: Iterable[Any] = reply.items()
        elif isinstance(reply, (list, tuple)):
            streams = reply
        else:
            raise EmptyReplyError(f"无法解析 XREADGROUP 返回: {reply!r}")

        entries: list[tuple[Any, Any]] = []
        for stream in streams:
            try:
                key, stream_entries = stream
                key = to_text(key)
            except (TypeError, ValueError) as exc:
                raise EmptyReplyError(f"无法解析 XREADGROUP 返回: {reply!r}") from exc
            if key != self.stream_name:
                logger.warning("读取 {} 时返回了意外的 stream: {}", self.stream_name, key)
                continue
            for entry in stream_entries or []:
                entries.append(tuple(entry))
        return entries

    def _to_messages(self, entries: Iterable[Any]) -> list[Message]:
        messages: list[Message] = []
        for entry in entries:
            try:
                raw_id, raw_fields = entry
            except (TypeError, ValueError) as exc:
                raise EmptyReplyError(f"无法解析 stream 消息: {entry!r}") from exc
            if raw_id is None or raw_fields is None:
                # 消息仍在 pending 列表中，但内容已经被 XDEL / XTRIM 删除。
                logger.warning("跳过已从 stream 删除的 pending 消息: {}", raw_id)
                continue
            try:
                messages.append(Message.from_reply(raw_id, raw_fields))
            except (AttributeError, ValueError) as exc:
                raise EmptyReplyError(f"无法解析 stream 消息: {entry!r}") from exc
        return messages


def _parse_message_id(message_id: StreamId | str) -> StreamId:
    try:
        return StreamId.parse(message_id)
    except (AttributeError, ValueError) as exc:
        raise CommandError(f"非法的 stream id: {message_id!r}") from exc


def _without_seen(
    fetched: list[ConsumedMessage], seen: list[ConsumedMessage]
) -> list[ConsumedMessage]:
    seen_ids = {item.id for item in seen}
    return [item for item in fetched if item.id not in seen_ids]
