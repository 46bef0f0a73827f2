# broker_server/session_counter.py
# Источники текущего числа подключенных игровых сессий. Это число
# подставляется как occupancy в каждую запись каталога.
#
# Модель согласованности: значение читается один раз на сборку каталога,
# все записи одного ответа получают один и тот же снимок.
import logging
import threading

from core.redis_client import RedisClient

logger = logging.getLogger(__name__)

DEFAULT_SESSION_COUNT_KEY = "broker:world_sessions"


class WorldSessionCounter:
    """
    Счетчик сессий внутри процесса.

    Обработчики соединений только читают значение. Изменять его может
    владелец BrokerServer (например, при регистрации игровых сессий),
    поэтому запись и чтение защищены блокировкой.
    """
    def __init__(self, initial: int = 0):
        if initial < 0:
            raise ValueError(f"Session count cannot be negative: {initial}")
        self._value = initial
        self._lock = threading.Lock()

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    def decrement(self) -> int:
        with self._lock:
            if self._value > 0:
                self._value -= 1
            return self._value

    def set(self, value: int):
        if value < 0:
            raise ValueError(f"Session count cannot be negative: {value}")
        with self._lock:
            self._value = value

    async def current(self) -> int:
        with self._lock:
            return self._value


class RedisSessionCounter:
    """
    Счетчик сессий, хранящийся в Redis под ключом `key`.

    Значение записывают игровые серверы. Если ключа нет, считается 0.
    При ошибке Redis возвращается последнее успешно прочитанное значение.
    """
    def __init__(self, key: str = DEFAULT_SESSION_COUNT_KEY, redis_client: RedisClient | None = None):
        self.key = key
        self.redis_client = redis_client or RedisClient()
        self._last_value = 0

    async def current(self) -> int:
        try:
            raw_value = await self.redis_client.get(self.key)
        except Exception as e:
            logger.error(f"Failed to read session count '{self.key}' from Redis: {e}. Using last known value {self._last_value}.", exc_info=True)
            return self._last_value

        if raw_value is None:
            self._last_value = 0
            return 0
        try:
            value = max(int(raw_value), 0)
        except (TypeError, ValueError):
            logger.warning(f"Session count '{self.key}' in Redis is not an integer: {raw_value!r}. Using last known value {self._last_value}.")
            return self._last_value
        self._last_value = value
        return value
