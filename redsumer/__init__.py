"""基于 Redis Streams consumer group 的轻量消费协调层。

Consumer 每次 consume 按 new -> pending -> claim 的顺序组装一批消息，
并提供 is_still_mine 归属检查与幂等的 ack。
"""

from .consumer import Consumer
from .errors import (
    CommandError,
    EmptyReplyError,
    ErrorKind,
    RedsumerError,
    StreamConnectionError,
)
from .identifiers import BEGINNING, StreamId
from .producer import Producer
from .stream_config import (
    ClaimPolicy,
    ConsumerConfig,
    GroupIdentity,
    NewMessagesPolicy,
    PendingMessagesPolicy,
    build_consumer_config,
)
from .types import (
    AckOutcome,
    ConsumeBatch,
    ConsumedMessage,
    Message,
    OwnershipOutcome,
    PendingEntry,
    Phase,
)

__all__ = [
    "Consumer",
    "Producer",
    "StreamId",
    "BEGINNING",
    "ConsumerConfig",
    "GroupIdentity",
    "NewMessagesPolicy",
    "PendingMessagesPolicy",
    "ClaimPolicy",
    "build_consumer_config",
    "Message",
    "ConsumedMessage",
    "ConsumeBatch",
    "PendingEntry",
    "OwnershipOutcome",
    "AckOutcome",
    "Phase",
    "RedsumerError",
    "StreamConnectionError",
    "CommandError",
    "EmptyReplyError",
    "ErrorKind",
]
