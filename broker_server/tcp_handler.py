# broker_server/tcp_handler.py
# Этот модуль обрабатывает одно клиентское TCP-соединение брокера:
# читает кадры, выбирает действие по коду команды и отправляет ответ.
import asyncio
import logging
from typing import Sequence

from .directory import DirectoryError, ServerOption, build_directory
from .metrics import (
    ACTIVE_CONNECTIONS_BROKER, AUTH_ACKS, DIRECTORY_RESPONSES,
    INVALID_PACKETS, PACKETS_RECEIVED, UNKNOWN_COMMANDS,
)
from .packet import (
    FRESH_LOGIN, SVC_AUTH_ACK, SVC_AUTH_REQUEST, SVC_DIRECTORY_REQUEST,
    SVC_DIRECTORY_RESPONSE, InvalidPacketError, bytes_to_hex, generate_packet,
    parse_header, write_le,
)

logger = logging.getLogger(__name__)

READ_BUFFER_SIZE = 1024 # Одно чтение из сокета считается одним целым кадром

AUTH_ACK_BODY = write_le(0x0000, 2)
KNOWN_COMMANDS = (SVC_AUTH_REQUEST, SVC_DIRECTORY_REQUEST)


async def _read_packet(reader: asyncio.StreamReader, client_idle_timeout: float) -> bytes:
    if client_idle_timeout:
        return await asyncio.wait_for(reader.read(READ_BUFFER_SIZE), timeout=client_idle_timeout)
    return await reader.read(READ_BUFFER_SIZE)


async def handle_broker_client(reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                               server_options: Sequence[ServerOption], session_counter,
                               client_idle_timeout: float = 0.0):
    """
    Обслуживает клиента брокера до закрытия соединения.

    Команды:
        0x1013 - запрос аутентификации: всегда отвечаем 0x1312 с телом 00 00
                 и sequence 0xCBEB (учетные данные на этом уровне не проверяются).
        0x1100 - запрос каталога: отвечаем 0x1102 со списком серверов.
        прочие - логируем, ничего не отправляем, соединение не закрываем.

    Чтение короче 6 байт логируется как "Invalid Packet" и отбрасывается.
    Ошибка чтения/записи или истечение таймаута закрывают только это соединение.

    Args:
        reader (asyncio.StreamReader): Поток чтения от клиента.
        writer (asyncio.StreamWriter): Поток записи клиенту.
        server_options: Таблица рекламируемых серверов (только чтение).
        session_counter: Объект с корутиной current(), возвращающей число сессий.
        client_idle_timeout (float): Таймаут ожидания данных, 0 - ждать бесконечно.
    """
    addr = writer.get_extra_info('peername')
    logger.info(f"New connection from {addr}")
    ACTIVE_CONNECTIONS_BROKER.inc()
    socket_rx_sum = 0

    try:
        while True:
            data = await _read_packet(reader, client_idle_timeout)
            if not data:
                logger.info(f"BrokerTCPHandler [{addr}]: Client closed connection.")
                break

            try:
                header = parse_header(data)
            except InvalidPacketError as e:
                logger.warning(f"BrokerTCPHandler [{addr}]: {e}. Discarding: {bytes_to_hex(data)}")
                INVALID_PACKETS.inc()
                continue

            socket_rx_sum += header.payload_size
            command_label = f"0x{header.command:04X}" if header.command in KNOWN_COMMANDS else "unknown"
            PACKETS_RECEIVED.labels(command=command_label).inc()
            logger.debug(f"BrokerTCPHandler [{addr}]: RECV command=0x{header.command:04X} length={header.payload_size} rx_sum={socket_rx_sum} body={bytes_to_hex(data[6:])}")

            if header.command == SVC_AUTH_REQUEST:
                logger.info(f"BrokerTCPHandler [{addr}]: Authentication Request")
                response = generate_packet(FRESH_LOGIN, SVC_AUTH_ACK, AUTH_ACK_BODY)
                writer.write(response)
                await writer.drain()
                AUTH_ACKS.inc()

            elif header.command == SVC_DIRECTORY_REQUEST:
                logger.info(f"BrokerTCPHandler [{addr}]: Server Directory Request")
                world_session_count = await session_counter.current()
                try:
                    directory_body = build_directory(server_options, world_session_count)
                except DirectoryError as e:
                    logger.error(f"BrokerTCPHandler [{addr}]: Cannot build server directory: {e}", exc_info=True)
                    continue
                response = generate_packet(0, SVC_DIRECTORY_RESPONSE, directory_body)
                writer.write(response)
                await writer.drain()
                DIRECTORY_RESPONSES.inc()
                logger.debug(f"BrokerTCPHandler [{addr}]: SEND directory with {len(server_options)} servers, occupancy={world_session_count}")

            else:
                logger.warning(f"BrokerTCPHandler [{addr}]: Unknown command: 0x{header.command:04X}")
                UNKNOWN_COMMANDS.inc()

    except asyncio.TimeoutError:
        logger.warning(f"BrokerTCPHandler [{addr}]: No data from client for {client_idle_timeout}s, closing connection.")
    except ConnectionResetError:
        logger.warning(f"BrokerTCPHandler [{addr}]: Connection reset by client.", exc_info=True)
    except OSError as e:
        logger.error(f"BrokerTCPHandler [{addr}]: Socket error: {e}", exc_info=True)
    except Exception as e:
        logger.critical(f"BrokerTCPHandler [{addr}]: Critical error in handler: {e}", exc_info=True)
    finally:
        logger.info(f"BrokerTCPHandler [{addr}]: Closing connection.")
        ACTIVE_CONNECTIONS_BROKER.dec()
        if not writer.is_closing():
            writer.close()
            try:
                await writer.wait_closed()
            except Exception as e_close:
                logger.error(f"BrokerTCPHandler [{addr}]: Error during writer.wait_closed(): {e_close}", exc_info=True)
