# broker_server/server.py
# BrokerServer: держит таблицу серверов и счетчик сессий, принимает TCP-соединения
# и запускает отдельный обработчик на каждое соединение.
import asyncio
import logging
from typing import Sequence

from .directory import ServerOption
from .metrics import CONNECTIONS_REJECTED
from .tcp_handler import handle_broker_client

logger = logging.getLogger(__name__)


class BrokerServer:
    """
    Сервис брокера.

    Атрибуты:
        host (str): Адрес прослушивания.
        port (int): Порт прослушивания (0 - выбрать свободный).
        server_options (tuple[ServerOption]): Неизменяемая таблица серверов.
        session_counter: Источник числа живых сессий (корутина current()).
        max_connections (int): Лимит одновременных соединений, 0 - без лимита.
        client_idle_timeout (float): Таймаут чтения для каждого клиента, 0 - без таймаута.
    """
    def __init__(self, host: str, port: int, server_options: Sequence[ServerOption], session_counter,
                 max_connections: int = 0, client_idle_timeout: float = 0.0):
        self.host = host
        self.port = port
        self.server_options = tuple(server_options)
        self.session_counter = session_counter
        self.max_connections = max_connections
        self.client_idle_timeout = client_idle_timeout
        self.active_connections = 0
        self._writers: set[asyncio.StreamWriter] = set()
        self._server: asyncio.AbstractServer | None = None

    async def _on_client_connected(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        if self.max_connections and self.active_connections >= self.max_connections:
            addr = writer.get_extra_info('peername')
            logger.warning(f"Connection limit {self.max_connections} reached, rejecting {addr}.")
            CONNECTIONS_REJECTED.inc()
            writer.close()
            try:
                await writer.wait_closed()
            except Exception as e_close:
                logger.error(f"Error closing rejected connection {addr}: {e_close}", exc_info=True)
            return

        self.active_connections += 1
        self._writers.add(writer)
        try:
            await handle_broker_client(reader, writer, self.server_options, self.session_counter,
                                       client_idle_timeout=self.client_idle_timeout)
        finally:
            self._writers.discard(writer)
            self.active_connections -= 1

    async def start(self) -> asyncio.AbstractServer:
        """
        Привязывает TCP-сокет и начинает принимать соединения.

        Ошибки accept отдельных соединений обрабатывает цикл asyncio-сервера:
        они логируются, и прием продолжается.

        Raises:
            OSError: Если не удалось привязаться к адресу. Для сервиса это фатально.
        """
        try:
            self._server = await asyncio.start_server(self._on_client_connected, self.host, self.port)
        except OSError as e:
            logger.critical(f"Could not start Broker server on {self.host}:{self.port}: {e}", exc_info=True)
            raise

        addr = self._server.sockets[0].getsockname()
        self.port = addr[1]
        logger.info(f"Broker TCP Bound on {addr[0]}:{addr[1]}")
        for option in self.server_options:
            logger.info(f"Server: {option.server_name} - {option.server_description} on {option.server_address}:{option.server_port}")
        return self._server

    async def serve_forever(self):
        """Обслуживает соединения, пока задача не будет отменена."""
        if self._server is None:
            await self.start()
        await self._server.serve_forever()

    async def close(self):
        """Прекращает прием соединений и закрывает открытые клиентские соединения."""
        if self._server is not None:
            self._server.close()
            # wait_closed() ждет завершения всех обработчиков, поэтому сначала закрываем клиентов
            for writer in list(self._writers):
                writer.close()
            await self._server.wait_closed()
            self._server = None
            logger.info("Broker server stopped.")
