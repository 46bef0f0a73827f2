# broker_server/directory.py
# Этот модуль описывает рекламируемые игровые серверы (ServerOption) и
# сериализует их список в тело ответа на запрос каталога (команда 0x1102).
# Сериализация чистая: на вход снимок списка и текущее число сессий, без I/O.
import logging
from dataclasses import dataclass, replace
from typing import List, NamedTuple, Sequence

from .packet import HEADER_SIZE, MAX_FRAME_SIZE, read_be, read_le, write_be, write_le

logger = logging.getLogger(__name__)

DIRECTORY_HEADER = b'\x00\x00\x01' # Фиксированные байты перед числом записей
MAX_DIRECTORY_ENTRIES = 255 # Число записей и позиция кодируются одним байтом
MAX_SHORT_STRING = 255 # Строки имеют однобайтовый префикс длины
TEXT_ENCODING = 'utf-8'
MAX_DIRECTORY_BODY = MAX_FRAME_SIZE - HEADER_SIZE # Тело вместе с заголовком должно уместиться в 16-битную длину кадра
MAX_OCCUPANCY = 0xFFFF # При нем суффикс заполненности в описании самый длинный


class DirectoryError(ValueError):
    """Список серверов или одна из записей не укладывается в формат каталога."""


@dataclass(frozen=True)
class ServerOption:
    """
    Один рекламируемый игровой сервер.

    Экземпляры неизменяемы: occupancy (server_utilization) подставляется
    в копию записи при каждой сборке каталога.

    Атрибуты:
        server_name (str): Имя сервера (не длиннее 255 байт в UTF-8).
        server_description (str): Описание сервера.
        server_address (str): IPv4-адрес в виде "a.b.c.d".
        server_port (int): TCP-порт игрового сервера.
        server_utilization (int): Текущее число игроков.
        server_capacity (int): Максимальное число игроков.
        server_enabled (bool): Доступен ли сервер для входа.
    """
    server_name: str
    server_description: str
    server_address: str
    server_port: int
    server_utilization: int = 0
    server_capacity: int = 0
    server_enabled: bool = True

    def __post_init__(self):
        if len(self.server_name.encode(TEXT_ENCODING)) > MAX_SHORT_STRING:
            raise DirectoryError(f"Server name '{self.server_name[:32]}...' exceeds {MAX_SHORT_STRING} bytes")
        for field_name in ('server_port', 'server_utilization', 'server_capacity'):
            value = getattr(self, field_name)
            if not 0 <= value <= 0xFFFF:
                raise DirectoryError(f"{field_name}={value} for server '{self.server_name}' is out of range 0..65535")


class DirectoryEntry(NamedTuple):
    """Запись каталога в том виде, в каком она пришла по сети."""
    position: int
    name: str
    description: str
    address: str
    port: int
    utilization: int
    capacity: int
    enabled: bool


def format_extended_description(option: ServerOption, occupancy: int) -> bytes:
    """
    Формирует описание с заполненностью сервера:
    "<описание>\\r\\n[<occupancy>/<capacity>] players online".

    Если результат длиннее 255 байт, обрезается базовое описание,
    суффикс с заполненностью всегда сохраняется целиком.

    Returns:
        bytes: Закодированное описание, готовое к записи с префиксом длины.
    """
    suffix = f"\r\n[{occupancy}/{option.server_capacity}] players online".encode(TEXT_ENCODING)
    description = option.server_description.encode(TEXT_ENCODING)
    room = MAX_SHORT_STRING - len(suffix)
    if len(description) > room:
        logger.warning(f"Description of server '{option.server_name}' truncated to {room} bytes to fit the directory entry.")
        # Отбрасываем возможный обрезанный многобайтовый символ
        description = description[:room].decode(TEXT_ENCODING, 'ignore').encode(TEXT_ENCODING)
    return description + suffix


def ip_to_bytes(address: str) -> bytes:
    """
    Преобразует строковый IPv4-адрес в 4 байта.

    Нечисловой октет считается ошибкой конфигурации этой записи и
    кодируется как 0. Результат всегда ровно 4 байта.
    """
    ip_bytes = bytearray()
    for part in address.split('.'):
        try:
            octet = int(part)
        except ValueError:
            logger.warning(f"Non-numeric octet '{part}' in server address '{address}', encoding as 0.")
            octet = 0
        ip_bytes.append(octet & 0xFF)
    if len(ip_bytes) != 4:
        logger.warning(f"Server address '{address}' does not have 4 octets, normalizing.")
    return bytes(ip_bytes[:4].ljust(4, b'\x00'))


def encode_server_entry(option: ServerOption, position: int) -> bytes:
    """Кодирует одну запись каталога. Occupancy берется из option.server_utilization."""
    name = option.server_name.encode(TEXT_ENCODING)
    extended_description = format_extended_description(option, option.server_utilization)

    entry = bytearray()
    entry.extend((position, 0x00, 0x00))
    entry.append(len(name))
    entry.extend(name)
    entry.append(len(extended_description))
    entry.extend(extended_description)
    entry.extend(ip_to_bytes(option.server_address))
    entry.extend(write_be(option.server_port, 2)) # Порт в сетевом порядке байт
    entry.extend(write_le(option.server_utilization, 2))
    entry.extend(write_le(option.server_capacity, 2))
    entry.append(1 if option.server_enabled else 0)
    return bytes(entry)


def build_directory(server_options: Sequence[ServerOption], world_session_count: int) -> bytes:
    """
    Собирает тело ответа на запрос каталога.

    Каждой записи перед кодированием присваивается текущее число сессий,
    исходные объекты не изменяются.

    Args:
        server_options: Снимок списка серверов (порядок задает позицию).
        world_session_count (int): Текущее число подключенных сессий.

    Raises:
        DirectoryError: Если записей больше 255, occupancy вне диапазона
            или тело не помещается в один кадр.
    """
    if len(server_options) > MAX_DIRECTORY_ENTRIES:
        raise DirectoryError(f"Directory holds {len(server_options)} servers, at most {MAX_DIRECTORY_ENTRIES} allowed")

    directory = bytearray(DIRECTORY_HEADER)
    directory.append(len(server_options))
    for position, option in enumerate(server_options):
        snapshot = replace(option, server_utilization=world_session_count)
        directory.extend(encode_server_entry(snapshot, position))
    if len(directory) > MAX_DIRECTORY_BODY:
        raise DirectoryError(f"Directory body is {len(directory)} bytes, at most {MAX_DIRECTORY_BODY} fit in one packet")
    return bytes(directory)


def parse_directory(body: bytes) -> List[DirectoryEntry]:
    """
    Разбирает тело ответа 0x1102 обратно в список записей.
    Используется пробным клиентом, нагрузочным сценарием и тестами.

    Raises:
        DirectoryError: Если заголовок не совпадает или данные обрываются.
    """
    if len(body) < 4 or body[:3] != DIRECTORY_HEADER:
        raise DirectoryError("Directory body does not start with the directory header")

    count = body[3]
    offset = 4
    entries = []
    try:
        for _ in range(count):
            position = body[offset]
            offset += 3
            name_len = body[offset]
            name = body[offset + 1:offset + 1 + name_len].decode(TEXT_ENCODING)
            offset += 1 + name_len
            desc_len = body[offset]
            description = body[offset + 1:offset + 1 + desc_len].decode(TEXT_ENCODING)
            offset += 1 + desc_len
            address = ".".join(str(b) for b in body[offset:offset + 4])
            port = read_be(body, offset + 4, 2)
            utilization = read_le(body, offset + 6, 2)
            capacity = read_le(body, offset + 8, 2)
            enabled = body[offset + 10] != 0
            offset += 11
            entries.append(DirectoryEntry(position, name, description, address, port, utilization, capacity, enabled))
    except IndexError as e:
        raise DirectoryError(f"Directory body truncated after {len(entries)} of {count} entries") from e

    if offset > len(body):
        raise DirectoryError(f"Directory body truncated after {len(entries)} of {count} entries")
    return entries
