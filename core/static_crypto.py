# core/static_crypto.py
# Расшифровка блоков статическим ключом (AES, режим ECB).
# Клиент шифрует фиксированным ключом некоторые поля (например, блок
# с именем пользователя при логине); этот модуль позволяет их прочитать.
#
# Запуск из командной строки:
#   python -m core.static_crypto E4AE6422B374D8779DC2F3695810650F
import argparse
import binascii
import logging
import os
import sys

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

logger = logging.getLogger(__name__)

AES_BLOCK_SIZE = 16

# Типы шифрования. Брокер использует один ключ (ENCRYPTION_TYPE_BROKER);
# ключ лаунчера оставлен как точка расширения.
ENCRYPTION_TYPE_LAUNCHER = 1
ENCRYPTION_TYPE_BROKER = 2

DEFAULT_STATIC_KEY_BROKER = "FFB3B3BEAE97AD83B9610E23A43C2EB0"
STATIC_KEY_BROKER = os.getenv("STATIC_KEY_BROKER", DEFAULT_STATIC_KEY_BROKER)
STATIC_KEY_LAUNCHER = os.getenv("STATIC_KEY_LAUNCHER", "")


class StaticCryptoError(Exception):
    """Базовая ошибка статической расшифровки (в т.ч. неизвестный тип шифрования)."""


class KeyFormatError(StaticCryptoError):
    """Ключ в конфигурации не является корректной hex-строкой."""


class CipherInitError(StaticCryptoError):
    """Длина ключа недопустима для AES."""


def decode_hex_key(key_hex: str) -> bytes:
    """
    Декодирует hex-строку ключа.

    Raises:
        KeyFormatError: Если строка не является корректным hex.
    """
    try:
        return bytes.fromhex(key_hex)
    except (ValueError, TypeError) as e:
        raise KeyFormatError(f"Static key is not valid hex: {e}") from e


def aes_decrypt_block(block: bytes, key: bytes) -> bytes:
    """
    Расшифровывает данные AES в режиме ECB.

    Args:
        block (bytes): Шифротекст, длина кратна 16 байтам.
        key (bytes): Ключ AES (16, 24 или 32 байта).

    Raises:
        CipherInitError: Если длина ключа недопустима для AES.
        StaticCryptoError: Если длина блока не кратна 16 или блок пуст.
    """
    if not block or len(block) % AES_BLOCK_SIZE != 0:
        raise StaticCryptoError(f"Ciphertext length {len(block)} is not a positive multiple of {AES_BLOCK_SIZE}")
    try:
        cipher = Cipher(algorithms.AES(key), modes.ECB())
    except ValueError as e:
        raise CipherInitError(f"Cannot initialize AES with a {len(key)}-byte key: {e}") from e

    decryptor = cipher.decryptor()
    return decryptor.update(bytes(block)) + decryptor.finalize()


def static_decrypt(block: bytes, encryption_type: int = ENCRYPTION_TYPE_BROKER, keys: dict | None = None) -> bytes:
    """
    Расшифровывает блок статическим ключом выбранного типа.

    Args:
        block (bytes): Шифротекст.
        encryption_type (int): ENCRYPTION_TYPE_BROKER (по умолчанию) или ENCRYPTION_TYPE_LAUNCHER.
        keys (dict, optional): Переопределение hex-ключей {тип: hex}. По умолчанию
            используются STATIC_KEY_BROKER и STATIC_KEY_LAUNCHER.

    Raises:
        StaticCryptoError: Неизвестный тип шифрования.
        KeyFormatError: Ключ не является hex.
        CipherInitError: Длина ключа недопустима для AES.
    """
    key_table = {
        ENCRYPTION_TYPE_LAUNCHER: STATIC_KEY_LAUNCHER,
        ENCRYPTION_TYPE_BROKER: STATIC_KEY_BROKER,
    }
    if keys:
        key_table.update(keys)

    if encryption_type not in key_table:
        raise StaticCryptoError(f"Invalid encryption type: {encryption_type}")

    key = decode_hex_key(key_table[encryption_type])
    return aes_decrypt_block(block, key)


def string_decode(input_bytes: bytes) -> str:
    """Строка до первого нулевого байта, один символ на байт."""
    result = ""
    for input_byte in input_bytes:
        if input_byte == 0:
            break
        result += chr(input_byte)
    return result


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Decrypt a static-key block and print it as a null-terminated string.")
    parser.add_argument("block_hex", help="Ciphertext as hex (multiple of 16 bytes)")
    parser.add_argument("--type", type=int, default=ENCRYPTION_TYPE_BROKER, dest="encryption_type",
                        help="Encryption type: 1 = launcher key, 2 = broker key (default)")
    parser.add_argument("--key", default=None, help="Override the key for the selected type (hex)")
    args = parser.parse_args(argv)

    try:
        block = binascii.unhexlify(args.block_hex)
    except (binascii.Error, ValueError) as e:
        print(f"Error decoding hex string: {e}", file=sys.stderr)
        return 1

    keys = {args.encryption_type: args.key} if args.key else None
    try:
        decrypted = static_decrypt(block, args.encryption_type, keys=keys)
    except StaticCryptoError as e:
        print(f"Error decrypting data: {e}", file=sys.stderr)
        return 1

    print(string_decode(decrypted))
    return 0


if __name__ == '__main__':
    sys.exit(main())
