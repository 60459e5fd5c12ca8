"""Redis Stream 消息 ID。

格式为 ``<毫秒时间戳>-<序号>``，同一个 stream 内严格递增且不会复用。
除了真实 ID 之外，Redis 命令里还会出现几个特殊游标：

- ``>``: 只读取从未投递过的消息（XREADGROUP）。
- ``$``: 只读取未来的消息（XGROUP CREATE）。
- ``-`` / ``+``: 范围查询的最小 / 最大边界（XPENDING）。
"""

from __future__ import annotations

from dataclasses import dataclass

NEVER_DELIVERED = ">"
ONLY_FUTURE = "$"
RANGE_MIN = "-"
RANGE_MAX = "+"


@dataclass(frozen=True, order=True)
class StreamId:
    """可比较、可哈希的 stream 消息 ID。"""

    timestamp_ms: int
    sequence: int = 0

    def __post_init__(self) -> None:
        if self.timestamp_ms < 0 or self.sequence < 0:
            raise ValueError(f"非法的 stream id: {self.timestamp_ms}-{self.sequence}")

    @classmethod
    def parse(cls, raw: str | bytes | StreamId) -> StreamId:
        """解析 ``1767854208631-0`` 或 ``1767854208631`` 形式的 ID。"""

        if isinstance(raw, StreamId):
            return raw
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")

        timestamp, sep, sequence = raw.strip().partition("-")
        if not timestamp.isdigit() or (sep and not sequence.isdigit()):
            raise ValueError(f"非法的 stream id: {raw!r}")
        return cls(int(timestamp), int(sequence) if sep else 0)

    def __str__(self) -> str:
        return f"{self.timestamp_ms}-{self.sequence}"


BEGINNING = StreamId(0, 0)
