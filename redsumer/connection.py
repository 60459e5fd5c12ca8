"""Redis 连接配置。

连接参数全部来自环境变量：REDIS_HOST / REDIS_PORT / REDIS_DB / REDIS_PASSWORD。
Producer 和 Consumer 只接收已经建立好的客户端，连接的创建与鉴权在这里完成。
"""

from __future__ import annotations

import os
from dataclasses import dataclass

import redis.asyncio as redis


@dataclass(frozen=True)
class RedisSettings:
    host: str
    port: int
    db: int
    password: str | None

    @classmethod
    def from_env(cls) -> RedisSettings:
        return cls(
            host=os.getenv("REDIS_HOST", "127.0.0.1"),
            port=int(os.getenv("REDIS_PORT", "6379")),
            db=int(os.getenv("REDIS_DB", "0")),
            password=os.getenv("REDIS_PASSWORD") or None,
        )

    @property
    def url(self) -> str:
        if self.password:
            return f"redis://:{self.password}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


def build_redis_client(settings: RedisSettings | None = None) -> redis.Redis:
    """构造 asyncio Redis 客户端，返回值统一解码为 str。"""

    settings = settings or RedisSettings.from_env()
    return redis.Redis(
        host=settings.host,
        port=settings.port,
        db=settings.db,
        password=settings.password,
        decode_responses=True,
    )
