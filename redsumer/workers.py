"""Worker 示例：consume -> 归属检查 -> 业务处理 -> ACK。

处理失败的消息不 ACK，留在 pending 列表中：
- 同名消费者重启后会通过 pending 路径重新读到。
- 超过 claim 阈值后，其他消费者会通过 claim 路径接管。
"""

from __future__ import annotations

import asyncio
import os
import sys
from typing import Awaitable, Callable

from loguru import logger
from pydantic import BaseModel, Field

from redsumer.cleanup_consumers import cleanup_idle_consumers
from redsumer.connection import build_redis_client
from redsumer.consumer import Consumer
from redsumer.errors import RedsumerError
from redsumer.stream_config import ConsumerConfig, build_consumer_config
from redsumer.types import ConsumeBatch, Message, Phase

MessageHandler = Callable[[Message], Awaitable[None]]

CONSUMER_IDLE_CLEANUP_MS = 3 * 24 * 60 * 60 * 1000  # 3 天


class DemoTask(BaseModel):
    """演示任务模型（与 publisher.py 保持一致）。"""

    task_name: str = Field(..., description="任务名称")
    doc_id: str | None = Field(default=None, description="文档 ID")


async def process_batch(consumer: Consumer, batch: ConsumeBatch, handler: MessageHandler) -> int:
    """处理一批消息，返回成功 ACK 的数量。"""

    acked = 0
    for item in batch:
        ownership = await consumer.is_still_mine(item.id)
        if not ownership.belongs_to_caller:
            logger.warning(
                "消息已不属于当前消费者，跳过: id={}, owner={}",
                item.id,
                ownership.current_owner,
            )
            continue

        if item.phase is Phase.CLAIMED:
            logger.warning(
                "处理接管的超时消息: id={}, delivery_count={}", item.id, item.delivery_count
            )

        try:
            await handler(item.message)
        except Exception:
            logger.exception("消息处理失败，保留在 pending 列表: id={}", item.id)
            continue

        outcome = await consumer.ack(item.id)
        if outcome.removed:
            acked += 1
        else:
            logger.warning("ACK 时 pending 记录已不存在: id={}", item.id)
    return acked


async def run_worker(
    consumer: Consumer,
    handler: MessageHandler,
    *,
    stop_event: asyncio.Event,
    idle_sleep_s: float = 1.0,
    error_sleep_s: float = 1.0,
) -> None:
    """循环消费直到 ``stop_event`` 被设置。"""

    logger.info(
        "worker 启动: stream={}, group={}, consumer={}",
        consumer.stream_name,
        consumer.group_name,
        consumer.consumer_name,
    )
    while not stop_event.is_set():
        try:
            try:
                batch = await consumer.consume()
            except RedsumerError as exc:
                logger.error("consume 失败: {}", exc)
                if exc.batch:
                    await process_batch(consumer, exc.batch, handler)
                await asyncio.sleep(error_sleep_s)
                continue

            if not batch:
                if consumer.config.new is None or consumer.config.new.block_ms == 0:
                    await asyncio.sleep(idle_sleep_s)
                continue

            await process_batch(consumer, batch, handler)
        except RedsumerError as exc:
            logger.error("归属检查或 ACK 失败: {}", exc)
            await asyncio.sleep(error_sleep_s)

    logger.info("worker 已停止: consumer={}", consumer.consumer_name)


async def handle_demo_task(message: Message) -> None:
    """统一任务处理函数。"""

    task = message.decode(DemoTask)
    logger.info("开始处理任务: id={}, task_name={}, doc_id={}", message.id, task.task_name, task.doc_id)

    # 业务逻辑（示例）
    # 这里可以调用数据库、HTTP、LLM 或其他内部服务。


def consumer_config_from_env() -> ConsumerConfig:
    return build_consumer_config(
        stream_name=os.getenv("STREAM_NAME", "demo-best-practice-stream"),
        group_name=os.getenv("GROUP_NAME", "demo-best-practice-group"),
        consumer_name=os.getenv("CONSUMER_NAME") or None,
        batch_size=int(os.getenv("BATCH_SIZE", "10")),
        block_ms=int(os.getenv("BLOCK_MS", "1000")),
        claim_min_idle_ms=int(os.getenv("CLAIM_MIN_IDLE_MS", "60000")),
    )


async def main() -> None:
    logger.remove()
    logger.add(sys.stderr, level=os.getenv("LOG_LEVEL", "INFO"))

    config = consumer_config_from_env()
    consumer = Consumer(build_redis_client(), config, owns_connection=True)
    stop_event = asyncio.Event()

    async with consumer:
        cleaned = await cleanup_idle_consumers(
            consumer.redis_client,
            stream_name=consumer.stream_name,
            group_name=consumer.group_name,
            current_consumer_names=[consumer.consumer_name],
            idle_threshold_ms=CONSUMER_IDLE_CLEANUP_MS,
        )
        logger.info("启动清理完成，删除消费者数量: {}", cleaned)

        await run_worker(consumer, handle_demo_task, stop_event=stop_event)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("收到中断信号，worker 退出")
