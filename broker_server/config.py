# broker_server/config.py
# Конфигурация брокера: адрес прослушивания, лимиты, источник числа сессий
# и таблица рекламируемых серверов. Значения берутся из переменных окружения,
# таблица серверов может быть загружена из JSON-файла.
import json
import logging
import os
from dataclasses import dataclass, field
from typing import List, Tuple

from .directory import MAX_DIRECTORY_ENTRIES, MAX_OCCUPANCY, DirectoryError, ServerOption, build_directory
from .session_counter import DEFAULT_SESSION_COUNT_KEY

logger = logging.getLogger(__name__)

DEFAULT_BROKER_HOST = '0.0.0.0'
DEFAULT_BROKER_PORT = 8372
DEFAULT_METRICS_PORT = 8001
DEFAULT_LOG_LEVEL = 'DEBUG'

SESSION_COUNT_SOURCES = ('static', 'redis')

# Таблица серверов по умолчанию, если BROKER_SERVER_OPTIONS_FILE не задан
DEFAULT_SERVER_OPTIONS: Tuple[ServerOption, ...] = (
    ServerOption(
        server_name="Free Channel",
        server_description="Avatar On",
        server_address="127.0.0.1",
        server_port=8360,
        server_capacity=20,
        server_enabled=True,
    ),
    ServerOption(
        server_name="Beginner Channel",
        server_description="Avatar Off",
        server_address="127.0.0.1",
        server_port=8361,
        server_capacity=20,
        server_enabled=True,
    ),
)


class ConfigError(Exception):
    """Файл с таблицей серверов не читается или имеет неверный формат."""


@dataclass(frozen=True)
class BrokerConfig:
    """
    Настройки процесса брокера. Создается один раз при старте.

    Атрибуты:
        host (str): Адрес прослушивания.
        port (int): TCP-порт брокера.
        metrics_enabled (bool): Запускать ли HTTP-сервер метрик Prometheus.
        metrics_port (int): Порт сервера метрик.
        max_connections (int): Лимит одновременных соединений, 0 - без лимита.
        client_idle_timeout (float): Таймаут ожидания данных от клиента в секундах, 0 - без таймаута.
        server_options_file (str | None): Путь к JSON-файлу с таблицей серверов.
        session_count_source (str): 'static' или 'redis'.
        session_count_key (str): Ключ Redis со счетчиком сессий.
        static_session_count (int): Начальное значение счетчика для источника 'static'.
        log_level (str): Уровень логирования.
    """
    host: str = DEFAULT_BROKER_HOST
    port: int = DEFAULT_BROKER_PORT
    metrics_enabled: bool = True
    metrics_port: int = DEFAULT_METRICS_PORT
    max_connections: int = 0
    client_idle_timeout: float = 0.0
    server_options_file: str | None = None
    session_count_source: str = 'static'
    session_count_key: str = DEFAULT_SESSION_COUNT_KEY
    static_session_count: int = 0
    log_level: str = DEFAULT_LOG_LEVEL
    server_options: Tuple[ServerOption, ...] = field(default=DEFAULT_SERVER_OPTIONS)


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    value_str = os.environ.get(name)
    if value_str is None or value_str == '':
        return default
    try:
        value = int(value_str)
    except ValueError:
        logger.warning(f"Invalid value for {name} ('{value_str}'). Using default {default}.")
        return default
    if value < minimum:
        logger.warning(f"Value for {name} ({value}) is below {minimum}. Using default {default}.")
        return default
    return value


def _env_float(name: str, default: float) -> float:
    value_str = os.environ.get(name)
    if value_str is None or value_str == '':
        return default
    try:
        value = float(value_str)
    except ValueError:
        logger.warning(f"Invalid value for {name} ('{value_str}'). Using default {default}.")
        return default
    if value < 0:
        logger.warning(f"Value for {name} ({value}) is negative. Using default {default}.")
        return default
    return value


def _env_bool(name: str, default: bool) -> bool:
    value_str = os.environ.get(name)
    if value_str is None or value_str == '':
        return default
    return value_str.strip().lower() in ('1', 'true', 'yes', 'on')


def load_server_options(path: str) -> List[ServerOption]:
    """
    Загружает таблицу серверов из JSON-файла.

    Формат: массив объектов с ключами name, description, address, port,
    capacity и необязательным enabled (JSON true/false, по умолчанию true).

    Raises:
        ConfigError: Файл не читается, не является JSON нужной структуры,
            запись не проходит проверку ServerOption или каталог
            не помещается в один кадр.
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw_options = json.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read server options file '{path}': {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Server options file '{path}' is not valid JSON: {e}") from e

    if not isinstance(raw_options, list):
        raise ConfigError(f"Server options file '{path}' must contain a JSON array")
    if len(raw_options) > MAX_DIRECTORY_ENTRIES:
        raise ConfigError(f"Server options file '{path}' lists {len(raw_options)} servers, at most {MAX_DIRECTORY_ENTRIES} allowed")

    options = []
    for index, raw in enumerate(raw_options):
        if not isinstance(raw, dict):
            raise ConfigError(f"Server option #{index} in '{path}' must be an object")
        enabled = raw.get('enabled', True)
        if not isinstance(enabled, bool):
            raise ConfigError(f"Server option #{index} in '{path}' has non-boolean enabled={enabled!r}")
        try:
            options.append(ServerOption(
                server_name=str(raw['name']),
                server_description=str(raw.get('description', '')),
                server_address=str(raw['address']),
                server_port=int(raw['port']),
                server_capacity=int(raw.get('capacity', 0)),
                server_enabled=enabled,
            ))
        except KeyError as e:
            raise ConfigError(f"Server option #{index} in '{path}' is missing key {e}") from e
        except (TypeError, ValueError) as e: # DirectoryError - подкласс ValueError
            raise ConfigError(f"Server option #{index} in '{path}' is invalid: {e}") from e

    # Каталог должен помещаться в один кадр при любой заполненности
    try:
        build_directory(options, MAX_OCCUPANCY)
    except DirectoryError as e:
        raise ConfigError(f"Server options file '{path}' does not fit in one directory packet: {e}") from e

    logger.info(f"Loaded {len(options)} server options from '{path}'.")
    return options


def load_config_from_env() -> BrokerConfig:
    """
    Собирает BrokerConfig из переменных окружения.
    Некорректные числовые значения заменяются значениями по умолчанию с предупреждением.

    Raises:
        ConfigError: Если указан BROKER_SERVER_OPTIONS_FILE и его не удалось загрузить.
    """
    session_count_source = os.environ.get('BROKER_SESSION_COUNT_SOURCE', 'static').strip().lower()
    if session_count_source not in SESSION_COUNT_SOURCES:
        logger.warning(f"Unknown BROKER_SESSION_COUNT_SOURCE '{session_count_source}'. Using 'static'.")
        session_count_source = 'static'

    server_options_file = os.environ.get('BROKER_SERVER_OPTIONS_FILE') or None
    if server_options_file:
        server_options = tuple(load_server_options(server_options_file))
    else:
        server_options = DEFAULT_SERVER_OPTIONS

    config = BrokerConfig(
        host=os.environ.get('BROKER_SERVER_HOST', DEFAULT_BROKER_HOST),
        port=_env_int('BROKER_SERVER_PORT', DEFAULT_BROKER_PORT),
        metrics_enabled=_env_bool('BROKER_METRICS_ENABLED', True),
        metrics_port=_env_int('BROKER_METRICS_PORT', DEFAULT_METRICS_PORT),
        max_connections=_env_int('BROKER_MAX_CONNECTIONS', 0),
        client_idle_timeout=_env_float('BROKER_CLIENT_IDLE_TIMEOUT', 0.0),
        server_options_file=server_options_file,
        session_count_source=session_count_source,
        session_count_key=os.environ.get('BROKER_SESSION_COUNT_KEY', DEFAULT_SESSION_COUNT_KEY),
        static_session_count=_env_int('BROKER_WORLD_SESSIONS', 0),
        log_level=os.environ.get('BROKER_LOG_LEVEL', DEFAULT_LOG_LEVEL).upper(),
        server_options=server_options,
    )
    logger.debug(f"Broker configuration loaded: {config}")
    return config
