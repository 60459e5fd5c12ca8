"""redsumer 的错误类型。

所有失败都归为封闭的几类：

- connection: 传输层失败，通常可以由调用方重试。
- command: Redis 拒绝了命令（参数错误、group / stream 不存在等）。
- empty_reply: Redis 返回了客户端无法解释的结构，视为缺陷而不是常规情况。
- timeout: 仅作说明。阻塞读取超时且没有消息是正常的空结果，不会抛出。

组件内部不做重试、退避或吞掉异常，重试策略由调用方决定。
"""

from __future__ import annotations

from contextlib import contextmanager
from enum import Enum
from typing import TYPE_CHECKING, Iterator

from redis import exceptions as redis_exceptions

if TYPE_CHECKING:
    from redsumer.types import ConsumeBatch


class ErrorKind(str, Enum):
    CONNECTION = "connection"
    COMMAND = "command"
    EMPTY_REPLY = "empty_reply"
    TIMEOUT = "timeout"


class RedsumerError(Exception):
    """所有 redsumer 错误的基类。

    ``batch`` 只在 ``consume`` 的后续阶段失败时设置，保存失败之前已经取到的消息，
    调用方不会因为某一阶段失败而丢掉这些消息。
    """

    kind: ErrorKind

    def __init__(self, message: str, *, batch: ConsumeBatch | None = None) -> None:
        super().__init__(message)
        self.batch = batch


class StreamConnectionError(RedsumerError):
    kind = ErrorKind.CONNECTION


class CommandError(RedsumerError):
    kind = ErrorKind.COMMAND


class EmptyReplyError(RedsumerError):
    kind = ErrorKind.EMPTY_REPLY


@contextmanager
def translate_redis_errors(command: str) -> Iterator[None]:
    """把 redis-py 的异常转换为 redsumer 的错误类型，并保留原始异常链。"""

    try:
        yield
    except (redis_exceptions.ConnectionError, redis_exceptions.TimeoutError) as exc:
        raise StreamConnectionError(f"{command} 连接失败: {exc}") from exc
    except redis_exceptions.RedisError as exc:
        raise CommandError(f"{command} 被拒绝: {exc}") from exc
