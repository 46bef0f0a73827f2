# broker_server/metrics.py
# Метрики Prometheus для брокера серверов.
from prometheus_client import Counter, Gauge

# Количество открытых клиентских соединений
ACTIVE_CONNECTIONS_BROKER = Gauge(
    'broker_server_active_connections',
    'Number of active TCP connections to the Broker Server'
)

# Полученные кадры по коду команды ("0x1013", "0x1100" или "unknown")
PACKETS_RECEIVED = Counter(
    'broker_server_packets_received_total',
    'Total number of well-formed packets received',
    ['command']
)

# Чтения короче заголовка
INVALID_PACKETS = Counter(
    'broker_server_invalid_packets_total',
    'Total number of reads shorter than the packet header'
)

UNKNOWN_COMMANDS = Counter(
    'broker_server_unknown_commands_total',
    'Total number of packets with an unknown command code'
)

AUTH_ACKS = Counter(
    'broker_server_auth_acks_total',
    'Total number of authentication acknowledgements sent'
)

DIRECTORY_RESPONSES = Counter(
    'broker_server_directory_responses_total',
    'Total number of server directory responses sent'
)

# Соединения, закрытые сразу из-за лимита
CONNECTIONS_REJECTED = Counter(
    'broker_server_connections_rejected_total',
    'Total number of connections refused because the connection limit was reached'
)
