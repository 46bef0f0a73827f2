# Общие модули, используемые брокером: Redis-клиент и статическая расшифровка.
