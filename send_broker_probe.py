# send_broker_probe.py
# Скрипт для ручной проверки брокера: подключается, отправляет запрос
# аутентификации и запрос каталога, печатает разобранные ответы.
import argparse
import logging
import socket

from broker_server.directory import DirectoryError, parse_directory
from broker_server.packet import (
    HEADER_SIZE, SVC_AUTH_REQUEST, SVC_DIRECTORY_REQUEST, SVC_DIRECTORY_RESPONSE,
    bytes_to_hex, generate_packet, parse_header,
)

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def exchange(sock: socket.socket, command: int, body: bytes = b'') -> bytes:
    """Отправляет кадр с указанной командой и возвращает ответ одним чтением."""
    request = generate_packet(0, command, body)
    sock.sendall(request)
    logger.info(f"Отправлено: 0x{command:04X} {bytes_to_hex(request)}")
    response = sock.recv(4096)
    logger.info(f"Получено: {bytes_to_hex(response)}")
    return response


def probe_broker(host: str, port: int, timeout: float = 5.0):
    """
    Выполняет обмен аутентификация + каталог и логирует список серверов.

    Args:
        host (str): Хост брокера.
        port (int): Порт брокера.
        timeout (float): Таймаут сокета в секундах.
    """
    try:
        with socket.create_connection((host, port), timeout=timeout) as s:
            auth_response = exchange(s, SVC_AUTH_REQUEST, b'\x00' * 16)
            auth_header = parse_header(auth_response)
            logger.info(f"Ответ на аутентификацию: command=0x{auth_header.command:04X} sequence=0x{auth_header.sequence:04X}")

            directory_response = exchange(s, SVC_DIRECTORY_REQUEST)
            directory_header = parse_header(directory_response)
            if directory_header.command != SVC_DIRECTORY_RESPONSE:
                logger.error(f"Неожиданная команда в ответе: 0x{directory_header.command:04X}")
                return
            for entry in parse_directory(directory_response[HEADER_SIZE:directory_header.payload_size]):
                logger.info(f"[{entry.position}] {entry.name} {entry.address}:{entry.port} "
                            f"{entry.utilization}/{entry.capacity} enabled={entry.enabled} - {entry.description!r}")
    except ConnectionRefusedError:
        logger.error(f"Ошибка подключения: не удалось подключиться к {host}:{port}. Сервер недоступен.")
    except socket.timeout:
        logger.error(f"Ошибка: таймаут при ожидании ответа от {host}:{port}.")
    except (DirectoryError, ValueError) as e:
        logger.error(f"Не удалось разобрать ответ брокера: {e}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Probe a broker server with an auth and a directory request.")
    parser.add_argument("--host", default="localhost")
    parser.add_argument("--port", type=int, default=8372)
    args = parser.parse_args()
    probe_broker(args.host, args.port)
