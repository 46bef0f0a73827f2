# broker_server/main.py
# Главный модуль брокера серверов.
# Настраивает логирование, запускает сервер метрик Prometheus и TCP-сервер брокера.
import asyncio
import logging
import sys
import threading

from prometheus_client import start_http_server

from .config import BrokerConfig, ConfigError, load_config_from_env
from .server import BrokerServer
from .session_counter import RedisSessionCounter, WorldSessionCounter

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(module)s - %(message)s'


def setup_logging(level: str = 'DEBUG'):
    logging.basicConfig(level=getattr(logging, level, logging.DEBUG), format=LOG_FORMAT)


def start_metrics_server(port: int):
    """
    Запускает HTTP-сервер для сбора метрик Prometheus.
    Ошибки запуска логируются и не останавливают брокер.
    """
    try:
        start_http_server(port)
        logger.info(f"Prometheus metrics server for Broker Server started on port {port}.")
    except OSError as e:
        logger.error(f"OSError starting Prometheus metrics server on port {port}: {e}", exc_info=True)
    except Exception as e_metrics:
        logger.error(f"Failed to start Prometheus metrics server on port {port}: {e_metrics}", exc_info=True)


def create_session_counter(config: BrokerConfig):
    """Источник числа сессий согласно config.session_count_source."""
    if config.session_count_source == 'redis':
        logger.info(f"World session count is read from Redis key '{config.session_count_key}'.")
        return RedisSessionCounter(key=config.session_count_key)
    logger.info(f"World session count is static: {config.static_session_count}.")
    return WorldSessionCounter(config.static_session_count)


def create_broker_server(config: BrokerConfig) -> BrokerServer:
    return BrokerServer(
        host=config.host,
        port=config.port,
        server_options=config.server_options,
        session_counter=create_session_counter(config),
        max_connections=config.max_connections,
        client_idle_timeout=config.client_idle_timeout,
    )


async def main(config: BrokerConfig | None = None) -> int:
    """
    Запускает брокер и обслуживает соединения до остановки процесса.

    Returns:
        int: Код завершения. 1, если не удалось привязать сокет.
    """
    if config is None:
        config = load_config_from_env()

    if config.metrics_enabled and config.metrics_port:
        # daemon=True: поток метрик завершится вместе с процессом
        metrics_thread = threading.Thread(target=start_metrics_server, args=(config.metrics_port,), daemon=True)
        metrics_thread.name = "BrokerMetricsServerThread"
        metrics_thread.start()

    broker = create_broker_server(config)
    if isinstance(broker.session_counter, RedisSessionCounter):
        if not await broker.session_counter.redis_client.ping():
            logger.warning("Redis is not reachable at startup, directory occupancy stays at the last value read until it recovers.")

    try:
        await broker.start()
    except OSError:
        logger.critical("Broker server cannot start, exiting.")
        return 1

    try:
        await broker.serve_forever()
    except asyncio.CancelledError:
        logger.info("Broker server shutting down (cancelled).")
    finally:
        await broker.close()
    return 0


def run():
    """Точка входа консольного скрипта broker-server."""
    try:
        config = load_config_from_env()
    except ConfigError as e:
        # Логирование еще не настроено уровнем из конфигурации
        setup_logging()
        logger.critical(f"Invalid broker configuration: {e}")
        sys.exit(2)

    setup_logging(config.log_level)
    try:
        exit_code = asyncio.run(main(config))
    except KeyboardInterrupt:
        logger.info("Broker server stopped by KeyboardInterrupt.")
        exit_code = 0
    sys.exit(exit_code)


if __name__ == '__main__':
    run()
