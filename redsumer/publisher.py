"""Publisher 示例：发布任务并查询其消费状态。"""

from __future__ import annotations

import asyncio
import os

from loguru import logger

from redsumer.connection import build_redis_client
from redsumer.identifiers import StreamId
from redsumer.ownership import lookup_pending_entry
from redsumer.producer import Producer
from redsumer.workers import DemoTask

STREAM_NAME = os.getenv("STREAM_NAME", "demo-best-practice-stream")
GROUP_NAME = os.getenv("GROUP_NAME", "demo-best-practice-group")


async def main() -> None:
    redis_client = build_redis_client()
    try:
        producer = Producer(redis_client, STREAM_NAME, maxlen=200)
        task = DemoTask(task_name="generate-summary", doc_id="doc-001")
        message_id: StreamId = await producer.append(task.model_dump(exclude_none=True))
        logger.info("published task: id={}", message_id)

        # 演示：等待 worker 处理后查询 pending 状态。
        await asyncio.sleep(1)

        entry = await lookup_pending_entry(
            redis_client,
            stream_name=STREAM_NAME,
            group_name=GROUP_NAME,
            message_id=message_id,
        )
        if entry is None:
            logger.info("任务已 ACK 或尚未投递: id={}", message_id)
        else:
            logger.info(
                "任务处理中: id={}, owner={}, idle={}ms, delivery_count={}",
                message_id,
                entry.consumer,
                entry.idle_ms,
                entry.delivery_count,
            )
    finally:
        await redis_client.aclose()


if __name__ == "__main__":
    asyncio.run(main())
