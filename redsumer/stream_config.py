"""Redis Stream 消费配置。

设计目标：
1. 每个进程启动时生成唯一 consumer 前缀，避免多进程同名冲突。
2. 每次 consume 按固定顺序走三条路径：new -> pending -> claim。
3. claim 路径通过 min idle time 给正在处理的消费者留出宽限期。

所有配置都是不可变对象，构造时立即校验，不在运行过程中隐式补默认值。
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from redsumer.identifiers import ONLY_FUTURE, StreamId


PROCESS_CONSUMER_UUID = str(uuid.uuid4())


def _require_name(field_name: str, value: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} 不能为空")


def _require_positive(field_name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{field_name} 必须是正整数，当前值: {value!r}")


def _require_non_negative(field_name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{field_name} 不能为负数，当前值: {value!r}")


@dataclass(frozen=True)
class NewMessagesPolicy:
    """读取从未投递消息的策略。

    ``block_ms`` 为 0 表示不阻塞（不会向 Redis 发送 ``BLOCK 0``，那会永久阻塞）。
    """

    count: int
    block_ms: int

    def __post_init__(self) -> None:
        _require_positive("new.count", self.count)
        _require_non_negative("new.block_ms", self.block_ms)


@dataclass(frozen=True)
class PendingMessagesPolicy:
    """读取本消费者名下未 ACK 消息的策略。"""

    count: int

    def __post_init__(self) -> None:
        _require_positive("pending.count", self.count)


@dataclass(frozen=True)
class ClaimPolicy:
    """接管其他消费者超时消息的策略。"""

    count: int
    min_idle_ms: int

    def __post_init__(self) -> None:
        _require_positive("claim.count", self.count)
        _require_non_negative("claim.min_idle_ms", self.min_idle_ms)


@dataclass(frozen=True)
class GroupIdentity:
    """决定读取和接管哪一个 pending 列表。"""

    stream_name: str
    group_name: str
    consumer_name: str

    def __post_init__(self) -> None:
        _require_name("stream_name", self.stream_name)
        _require_name("group_name", self.group_name)
        _require_name("consumer_name", self.consumer_name)


@dataclass(frozen=True)
class ConsumerConfig:
    """单个 Consumer 实例的完整配置。

    ``since_id`` 是本地游标的起点，同时也是创建 consumer group 时的起始 ID
    （``0`` 表示从头开始，``$`` 表示只消费未来的消息）。
    某条路径的策略为 ``None`` 表示关闭该路径，但至少要开启一条。
    """

    identity: GroupIdentity
    batch_size: int
    new: NewMessagesPolicy | None
    pending: PendingMessagesPolicy | None
    claim: ClaimPolicy | None
    since_id: str
    max_wait_for_stream_s: int

    def __post_init__(self) -> None:
        _require_positive("batch_size", self.batch_size)
        _require_non_negative("max_wait_for_stream_s", self.max_wait_for_stream_s)
        if self.new is None and self.pending is None and self.claim is None:
            raise ValueError("new / pending / claim 至少需要开启一条消费路径")
        if self.since_id != ONLY_FUTURE:
            StreamId.parse(self.since_id)


def build_consumer_config(
    stream_name: str,
    group_name: str,
    *,
    batch_size: int,
    block_ms: int,
    claim_min_idle_ms: int,
    consumer_name: str | None = None,
    since_id: str = "0",
    max_wait_for_stream_s: int = 0,
) -> ConsumerConfig:
    """构造三条路径都开启、带有唯一消费者名的配置。

    每条路径的 count 都等于 ``batch_size``，实际读取数量由剩余容量决定。
    """

    if consumer_name is None:
        consumer_name = f"{group_name}-{PROCESS_CONSUMER_UUID}"
    return ConsumerConfig(
        identity=GroupIdentity(
            stream_name=stream_name,
            group_name=group_name,
            consumer_name=consumer_name,
        ),
        batch_size=batch_size,
        new=NewMessagesPolicy(count=batch_size, block_ms=block_ms),
        pending=PendingMessagesPolicy(count=batch_size),
        claim=ClaimPolicy(count=batch_size, min_idle_ms=claim_min_idle_ms),
        since_id=since_id,
        max_wait_for_stream_s=max_wait_for_stream_s,
    )
