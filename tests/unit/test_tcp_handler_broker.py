# tests/unit/test_tcp_handler_broker.py
# Модульные тесты для TCP-обработчика брокера (broker_server.tcp_handler.handle_broker_client).
# reader и writer мокируются, поэтому тесты проверяют только логику диспетчеризации
# и закрытия соединения, без реальных сокетов.

import asyncio
import unittest
from unittest.mock import AsyncMock, patch

from prometheus_client import REGISTRY

from broker_server.directory import ServerOption, parse_directory
from broker_server.packet import (
    HEADER_SIZE, SVC_AUTH_REQUEST, SVC_DIRECTORY_REQUEST, SVC_DIRECTORY_RESPONSE,
    generate_packet, get_sequence, parse_header,
)
from broker_server.session_counter import WorldSessionCounter
from broker_server.tcp_handler import handle_broker_client

SERVER_OPTIONS = (
    ServerOption("Free Channel", "Avatar On", "127.0.0.1", 8360, server_capacity=20),
    ServerOption("Beginner Channel", "Avatar Off", "127.0.0.1", 8361, server_capacity=30),
)


def request(command, body=b''):
    return generate_packet(0, command, body)


class TestBrokerTcpHandler(unittest.IsolatedAsyncioTestCase):
    """
    Набор тестов для обработчика соединений брокера.
    Использует `unittest.IsolatedAsyncioTestCase` для асинхронных тестов.
    """

    def make_streams(self, *reads):
        reader = AsyncMock(spec=asyncio.StreamReader)
        reader.read.side_effect = list(reads)
        writer = AsyncMock(spec=asyncio.StreamWriter)
        writer.is_closing.return_value = False
        writer.get_extra_info.return_value = ('127.0.0.1', 50000)
        return reader, writer

    def written(self, writer):
        return [c.args[0] for c in writer.write.call_args_list]

    async def test_auth_request_gets_fresh_login_ack(self):
        """На 0x1013 приходит 0x1312 с телом 00 00 и sequence 0xCBEB."""
        reader, writer = self.make_streams(request(SVC_AUTH_REQUEST, b'\x11' * 16), b'')

        await handle_broker_client(reader, writer, SERVER_OPTIONS, WorldSessionCounter())

        self.assertEqual(self.written(writer), [bytes.fromhex("0800EBCB12130000")])
        writer.drain.assert_called_once()
        writer.close.assert_called_once()
        writer.wait_closed.assert_called_once()

    async def test_directory_request_returns_server_list(self):
        """На 0x1100 приходит 0x1102 со списком серверов и текущей заполненностью."""
        reader, writer = self.make_streams(request(SVC_DIRECTORY_REQUEST), b'')

        await handle_broker_client(reader, writer, SERVER_OPTIONS, WorldSessionCounter(4))

        responses = self.written(writer)
        self.assertEqual(len(responses), 1)
        packet = responses[0]
        header = parse_header(packet)
        self.assertEqual(header.command, SVC_DIRECTORY_RESPONSE)
        self.assertEqual(header.payload_size, len(packet))
        self.assertEqual(header.sequence, get_sequence(len(packet)))
        body = packet[HEADER_SIZE:]
        self.assertEqual(body[:4], b'\x00\x00\x01\x02')
        entries = parse_directory(body)
        self.assertEqual([e.name for e in entries], ["Free Channel", "Beginner Channel"])
        self.assertEqual([e.utilization for e in entries], [4, 4])

    async def test_directory_reflects_counter_at_request_time(self):
        counter = WorldSessionCounter(1)
        reader, writer = self.make_streams(request(SVC_DIRECTORY_REQUEST), request(SVC_DIRECTORY_REQUEST), b'')

        original_current = counter.current
        calls = []

        async def current_then_bump():
            value = await original_current()
            calls.append(value)
            counter.increment()
            return value

        counter.current = current_then_bump
        await handle_broker_client(reader, writer, SERVER_OPTIONS, counter)

        first, second = self.written(writer)
        self.assertEqual(parse_directory(first[HEADER_SIZE:])[0].utilization, 1)
        self.assertEqual(parse_directory(second[HEADER_SIZE:])[0].utilization, 2)

    async def test_short_packet_is_discarded_and_connection_stays_open(self):
        """Чтение короче 6 байт не закрывает соединение и не порождает ответа."""
        reader, writer = self.make_streams(b'\x01\x02\x03', b'')

        with patch('broker_server.tcp_handler.INVALID_PACKETS') as mock_invalid:
            await handle_broker_client(reader, writer, SERVER_OPTIONS, WorldSessionCounter())
            mock_invalid.inc.assert_called_once()

        writer.write.assert_not_called()
        self.assertEqual(reader.read.call_count, 2, "После короткого пакета обработчик должен продолжить чтение.")
        writer.close.assert_called_once()

    async def test_short_packet_then_valid_request(self):
        reader, writer = self.make_streams(b'\x06\x00', request(SVC_AUTH_REQUEST), b'')

        await handle_broker_client(reader, writer, SERVER_OPTIONS, WorldSessionCounter())

        self.assertEqual(self.written(writer), [bytes.fromhex("0800EBCB12130000")])

    async def test_unknown_command_gets_no_response(self):
        reader, writer = self.make_streams(request(0x2000, b'\x01\x02'), request(SVC_AUTH_REQUEST), b'')

        with patch('broker_server.tcp_handler.UNKNOWN_COMMANDS') as mock_unknown:
            await handle_broker_client(reader, writer, SERVER_OPTIONS, WorldSessionCounter())
            mock_unknown.inc.assert_called_once()

        # Ответ только на второй (известный) запрос
        self.assertEqual(len(self.written(writer)), 1)
        self.assertEqual(parse_header(self.written(writer)[0]).command, 0x1312)

    async def test_read_error_closes_connection(self):
        reader, writer = self.make_streams(ConnectionResetError("reset by peer"))

        await handle_broker_client(reader, writer, SERVER_OPTIONS, WorldSessionCounter())

        writer.write.assert_not_called()
        writer.close.assert_called_once()
        writer.wait_closed.assert_called_once()

    async def test_write_error_closes_connection(self):
        reader, writer = self.make_streams(request(SVC_AUTH_REQUEST), request(SVC_AUTH_REQUEST), b'')
        writer.drain.side_effect = BrokenPipeError("broken pipe")

        await handle_broker_client(reader, writer, SERVER_OPTIONS, WorldSessionCounter())

        # После ошибки записи второй запрос уже не читается
        self.assertEqual(reader.read.call_count, 1)
        writer.close.assert_called_once()

    async def test_idle_timeout_closes_connection(self):
        reader, writer = self.make_streams()

        async def never_sends(*args, **kwargs):
            await asyncio.sleep(10)
            return b''

        reader.read.side_effect = never_sends

        await handle_broker_client(reader, writer, SERVER_OPTIONS, WorldSessionCounter(), client_idle_timeout=0.05)

        writer.write.assert_not_called()
        writer.close.assert_called_once()

    async def test_directory_build_error_keeps_connection(self):
        """Если каталог не собирается (occupancy вне диапазона), ответ не отправляется, соединение живо."""
        reader, writer = self.make_streams(request(SVC_DIRECTORY_REQUEST), request(SVC_AUTH_REQUEST), b'')

        await handle_broker_client(reader, writer, SERVER_OPTIONS, WorldSessionCounter(0x10000))

        self.assertEqual(len(self.written(writer)), 1)
        self.assertEqual(parse_header(self.written(writer)[0]).command, 0x1312)

    async def test_oversized_directory_keeps_connection(self):
        """Каталог, не помещающийся в один кадр, не отправляется; следующий запрос обслуживается."""
        wide_options = tuple(
            ServerOption("n" * 200, "d" * 200, "127.0.0.1", 8360 + i, server_capacity=20) for i in range(255)
        )
        reader, writer = self.make_streams(request(SVC_DIRECTORY_REQUEST), request(SVC_AUTH_REQUEST), b'')

        with patch('broker_server.tcp_handler.logger') as mock_logger:
            await handle_broker_client(reader, writer, wide_options, WorldSessionCounter())

        self.assertEqual(reader.read.call_count, 3)
        self.assertEqual(self.written(writer), [bytes.fromhex("0800EBCB12130000")])
        mock_logger.error.assert_called_once()
        mock_logger.critical.assert_not_called()

    async def test_active_connections_gauge_restored(self):
        before = REGISTRY.get_sample_value('broker_server_active_connections')
        reader, writer = self.make_streams(request(SVC_AUTH_REQUEST), b'')

        await handle_broker_client(reader, writer, SERVER_OPTIONS, WorldSessionCounter())

        self.assertEqual(REGISTRY.get_sample_value('broker_server_active_connections'), before)

    async def test_writer_already_closing_is_not_closed_again(self):
        reader, writer = self.make_streams(b'')
        writer.is_closing.return_value = True

        await handle_broker_client(reader, writer, SERVER_OPTIONS, WorldSessionCounter())

        writer.close.assert_not_called()


if __name__ == '__main__':
    unittest.main()
