# tests/unit/test_session_counter.py
# Тесты источников числа живых сессий: внутрипроцессного счетчика и счетчика в Redis.
import os
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from broker_server.session_counter import RedisSessionCounter, WorldSessionCounter
from core.redis_client import RedisClient


class TestWorldSessionCounter(unittest.IsolatedAsyncioTestCase):

    async def test_increment_and_decrement(self):
        counter = WorldSessionCounter()
        self.assertEqual(counter.increment(), 1)
        self.assertEqual(counter.increment(), 2)
        self.assertEqual(counter.decrement(), 1)
        self.assertEqual(await counter.current(), 1)

    async def test_decrement_never_goes_below_zero(self):
        counter = WorldSessionCounter()
        self.assertEqual(counter.decrement(), 0)
        self.assertEqual(await counter.current(), 0)

    async def test_set(self):
        counter = WorldSessionCounter(3)
        counter.set(40)
        self.assertEqual(await counter.current(), 40)

    def test_negative_values_rejected(self):
        with self.assertRaises(ValueError):
            WorldSessionCounter(-1)
        with self.assertRaises(ValueError):
            WorldSessionCounter().set(-5)


class TestRedisSessionCounter(unittest.IsolatedAsyncioTestCase):

    def make_counter(self, get_result=None, get_side_effect=None):
        redis_client = MagicMock()
        redis_client.get = AsyncMock(return_value=get_result, side_effect=get_side_effect)
        return RedisSessionCounter(key="broker:world_sessions", redis_client=redis_client), redis_client

    async def test_reads_integer_value(self):
        counter, redis_client = self.make_counter(get_result="17")
        self.assertEqual(await counter.current(), 17)
        redis_client.get.assert_awaited_once_with("broker:world_sessions")

    async def test_missing_key_means_zero(self):
        counter, _ = self.make_counter(get_result=None)
        self.assertEqual(await counter.current(), 0)

    async def test_redis_error_returns_last_known_value(self):
        counter, redis_client = self.make_counter(get_result="5")
        self.assertEqual(await counter.current(), 5)

        redis_client.get.side_effect = ConnectionError("redis down")
        with patch('broker_server.session_counter.logger') as mock_logger:
            self.assertEqual(await counter.current(), 5)
            mock_logger.error.assert_called_once()

    async def test_non_integer_value_returns_last_known_value(self):
        counter, redis_client = self.make_counter(get_result="8")
        await counter.current()
        redis_client.get.return_value = "many"
        self.assertEqual(await counter.current(), 8)

    async def test_negative_value_clamped_to_zero(self):
        counter, _ = self.make_counter(get_result="-4")
        self.assertEqual(await counter.current(), 0)

    async def test_default_client_is_singleton(self):
        with patch('broker_server.session_counter.RedisClient') as mock_redis_client:
            counter = RedisSessionCounter()
        self.assertIs(counter.redis_client, mock_redis_client.return_value)

    async def test_with_mocked_redis_client(self):
        """Значение, записанное игровыми серверами в Redis, видно брокеру."""
        RedisClient._instance = None
        self.addCleanup(setattr, RedisClient, '_instance', None)
        with patch.dict(os.environ, {"USE_MOCKS": "true"}):
            redis_client = RedisClient()
        counter = RedisSessionCounter(redis_client=redis_client)

        self.assertEqual(await counter.current(), 0)
        redis_client._mock_storage[counter.key] = "2"
        self.assertEqual(await counter.current(), 2)


if __name__ == '__main__':
    unittest.main()
