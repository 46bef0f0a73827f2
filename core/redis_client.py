# core/redis_client.py
# Асинхронный клиент Redis (Singleton). Брокер использует его только для чтения
# счетчика живых сессий, который публикуют игровые серверы.
import os
import logging
from unittest.mock import MagicMock, AsyncMock # Для режима USE_MOCKS

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class RedisClient:
    """
    Асинхронный клиент Redis, реализованный как Singleton.

    Если установлена переменная окружения USE_MOCKS="true", вместо реального
    соединения используется мок с внутренним словарем (get/ping).
    """
    _instance = None

    def __new__(cls, *args, **kwargs):
        if not cls._instance:
            cls._instance = super(RedisClient, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if hasattr(self, 'initialized'):
            return

        if os.getenv("USE_MOCKS") == "true":
            self.client = MagicMock(name="MockRedisClientInternal")
            self._mock_storage = {} # Ключи пишут игровые серверы, в тестах заполняется напрямую

            self.client.ping = AsyncMock(return_value=True)

            async def mock_get(name):
                return self._mock_storage.get(name)
            self.client.get = AsyncMock(side_effect=mock_get)

            self.initialized = True
            logger.info("Redis client initialized in MOCK mode.")
        else:
            self.redis_host = os.getenv("REDIS_HOST", "redis-service")
            self.redis_port = int(os.getenv("REDIS_PORT", 6379))
            self.pool = redis.ConnectionPool(
                host=self.redis_host,
                port=self.redis_port,
                decode_responses=True # Значения приходят строками, а не байтами
            )
            self.client = redis.Redis(connection_pool=self.pool)
            self.initialized = True
            logger.info(f"Redis client initialized for {self.redis_host}:{self.redis_port}")

    async def get(self, name):
        """Возвращает значение ключа или None, если ключа нет."""
        return await self.client.get(name)

    async def ping(self):
        """
        Проверяет соединение с Redis.

        Returns:
            bool: True, если Redis отвечает, иначе False.
        """
        try:
            return await self.client.ping()
        except Exception as e:
            logger.error(f"Error pinging Redis: {e}")
            return False
