# Пакет брокера серверов: принимает клиентов, подтверждает аутентификацию
# и отдает список игровых серверов с их заполненностью.

from .directory import ServerOption, build_directory, parse_directory
from .packet import generate_packet, get_sequence, parse_header
from .server import BrokerServer
from .tcp_handler import handle_broker_client
