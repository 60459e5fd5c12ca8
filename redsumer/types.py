"""消息与各类命令结果的数据结构。

这些结构只负责承载数据，不包含独立的业务逻辑；都是不可变对象，
返回给调用方之后即是一份时间点快照。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Mapping, TypeVar

from pydantic import BaseModel

from redsumer.identifiers import StreamId

ModelT = TypeVar("ModelT", bound=BaseModel)


def to_text(value: Any) -> str:
    """把 Redis 返回的 bytes / str / 数字统一转换为字符串。

    bytes 必须是合法的 UTF-8，否则抛出 ``UnicodeDecodeError``（``ValueError`` 子类），
    由调用方转换为 ``EmptyReplyError``，不做有损解码。
    """

    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


class Phase(str, Enum):
    """消息在一次 consume 中来自哪一条路径。"""

    NEW = "new"
    PENDING = "pending"
    CLAIMED = "claimed"


@dataclass(frozen=True)
class Message:
    """stream 中的一条消息，写入后不可变。"""

    id: StreamId
    fields: Mapping[str, str]

    @classmethod
    def from_reply(cls, raw_id: Any, raw_fields: Mapping[Any, Any]) -> Message:
        return cls(
            id=StreamId.parse(to_text(raw_id)),
            fields={to_text(k): to_text(v) for k, v in raw_fields.items()},
        )

    def decode(self, model: type[ModelT]) -> ModelT:
        """按业务模型校验并解析消息字段。"""

        return model.model_validate(dict(self.fields))


@dataclass(frozen=True)
class ConsumedMessage:
    """一次 consume 返回的消息及其来源路径。

    ``delivery_count`` 只有 claim 路径才确定（扫描 pending 列表时得到），
    其他路径为 ``None``。
    """

    message: Message
    phase: Phase
    delivery_count: int | None = None

    @property
    def id(self) -> StreamId:
        return self.message.id


@dataclass(frozen=True)
class ConsumeBatch:
    """一次 consume 的结果，顺序遵循 new -> pending -> claimed 的优先级。"""

    items: tuple[ConsumedMessage, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[ConsumedMessage]:
        return iter(self.items)

    def __bool__(self) -> bool:
        return bool(self.items)

    @property
    def messages(self) -> list[Message]:
        return [item.message for item in self.items]

    @property
    def ids(self) -> list[StreamId]:
        return [item.id for item in self.items]

    def by_phase(self, phase: Phase) -> list[ConsumedMessage]:
        return [item for item in self.items if item.phase is phase]


@dataclass(frozen=True)
class PendingEntry:
    """pending 列表中的一条记录：已投递但尚未 ACK。"""

    id: StreamId
    consumer: str
    idle_ms: int
    delivery_count: int

    @classmethod
    def from_reply(cls, raw: Mapping[str, Any]) -> PendingEntry:
        return cls(
            id=StreamId.parse(to_text(raw["message_id"])),
            consumer=to_text(raw["consumer"]),
            idle_ms=int(raw["time_since_delivered"]),
            delivery_count=int(raw["times_delivered"]),
        )


@dataclass(frozen=True)
class OwnershipOutcome:
    """``is_still_mine`` 的结果。

    这只是一个时间点快照：返回之后归属可能立刻因为其他消费者的 claim 而改变。
    pending 记录不存在时（已经被 ACK），owner / idle / count 都为 ``None``。
    """

    id: StreamId
    current_owner: str | None
    idle_ms: int | None
    delivery_count: int | None
    belongs_to_caller: bool

    def __bool__(self) -> bool:
        return self.belongs_to_caller


@dataclass(frozen=True)
class AckOutcome:
    """``ack`` 的结果，区分“已删除”与“无可删除”。"""

    id: StreamId
    removed: bool
