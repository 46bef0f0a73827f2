# broker_server/packet.py
# Этот модуль отвечает за бинарный формат кадров протокола брокера:
# разбор 6-байтового заголовка входящих пакетов и сборку исходящих пакетов
# с вычислением "скремблированного" поля sequence.
#
# Формат кадра (все целые little-endian):
#   [length:2][sequence:2][command:2][body...]
import logging
from typing import NamedTuple

logger = logging.getLogger(__name__)

HEADER_SIZE = 6 # Размер заголовка любого кадра в байтах
MAX_FRAME_SIZE = 0xFFFF # Длина кадра кодируется двумя байтами

# Коды команд
SVC_AUTH_REQUEST = 0x1013 # Клиент -> брокер: запрос аутентификации
SVC_AUTH_ACK = 0x1312 # Брокер -> клиент: подтверждение аутентификации
SVC_DIRECTORY_REQUEST = 0x1100 # Клиент -> брокер: запрос списка серверов
SVC_DIRECTORY_RESPONSE = 0x1102 # Брокер -> клиент: список серверов

# Значение sent_packet_length, обозначающее первый кадр нового логина
FRESH_LOGIN = -1
FRESH_LOGIN_SEQUENCE = 0xCBEB


class InvalidPacketError(ValueError):
    """Получено меньше байт, чем занимает заголовок кадра."""


class PacketHeader(NamedTuple):
    """
    Разобранный заголовок входящего кадра.

    Атрибуты:
        payload_size (int): Полная длина кадра (заголовок + тело), байты [0:2].
        sequence (int): Поле sequence, байты [2:4]. Брокер его не проверяет.
        command (int): Код команды, байты [4:6].
    """
    payload_size: int
    sequence: int
    command: int


def write_le(value: int, size: int) -> bytes:
    """Кодирует целое в `size` байт little-endian (значение обрезается по маске)."""
    return (value & ((1 << (8 * size)) - 1)).to_bytes(size, 'little')


def write_be(value: int, size: int) -> bytes:
    """Кодирует целое в `size` байт big-endian (сетевой порядок)."""
    return (value & ((1 << (8 * size)) - 1)).to_bytes(size, 'big')


def read_le(data: bytes, offset: int, size: int) -> int:
    return int.from_bytes(data[offset:offset + size], 'little')


def read_be(data: bytes, offset: int, size: int) -> int:
    return int.from_bytes(data[offset:offset + size], 'big')


def get_sequence(sum_packet_length: int) -> int:
    """
    Вычисляет поле sequence по сумме длин отправленных пакетов.

    Это не счетчик и не nonce, а фиксированное преобразование,
    которого ожидает клиент. Вычитание выполняется по модулю 65536.
    """
    return (((sum_packet_length * 0x43FD) & 0xFFFF) - 0x53FD) & 0xFFFF


def parse_header(data: bytes) -> PacketHeader:
    """
    Разбирает заголовок кадра из буфера, полученного одним чтением из сокета.

    Args:
        data (bytes): Сырые байты.

    Returns:
        PacketHeader: Длина, sequence и код команды.

    Raises:
        InvalidPacketError: Если в буфере меньше HEADER_SIZE байт.
    """
    if len(data) < HEADER_SIZE:
        raise InvalidPacketError(f"Invalid Packet (length {len(data)} < {HEADER_SIZE})")
    return PacketHeader(
        payload_size=read_le(data, 0, 2),
        sequence=read_le(data, 2, 2),
        command=read_le(data, 4, 2),
    )


def generate_packet(sent_packet_length: int, command: int, data_bytes: bytes) -> bytes:
    """
    Собирает исходящий кадр: заголовок (длина, sequence, команда) и тело.

    Args:
        sent_packet_length (int): Суммарная длина уже отправленных в сессии кадров.
            FRESH_LOGIN (-1) означает первый кадр нового логина: sequence
            принудительно равен 0xCBEB.
        command (int): Код команды.
        data_bytes (bytes): Тело кадра.

    Returns:
        bytes: Готовый к отправке кадр.
    """
    packet_expected_length = len(data_bytes) + HEADER_SIZE
    if packet_expected_length > MAX_FRAME_SIZE:
        raise ValueError(f"Packet body too large: {len(data_bytes)} bytes")

    if sent_packet_length == FRESH_LOGIN:
        packet_sequence = FRESH_LOGIN_SEQUENCE
    else:
        packet_sequence = get_sequence(sent_packet_length + packet_expected_length)

    response = bytearray()
    response.extend(write_le(packet_expected_length, 2))
    response.extend(write_le(packet_sequence, 2))
    response.extend(write_le(command, 2))
    response.extend(data_bytes)
    return bytes(response)


def bytes_to_hex(input_bytes: bytes) -> str:
    """Шестнадцатеричное представление байтов для логов."""
    return " ".join("{:02X}".format(b) for b in input_bytes)
