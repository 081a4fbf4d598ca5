from datetime import timedelta

# Окно приёма подписанных запросов (±60 секунд от времени сервера)
REQUEST_ACCEPT_WINDOW = timedelta(seconds=60)

# Время жизни nonce шире окна запроса, чтобы покрыть ретраи и рассинхрон часов
NONCE_TTL = timedelta(seconds=120)
NONCE_CLEANUP_INTERVAL_SECONDS = 60

# Платёжные сессии
PAYMENT_SESSION_WINDOW = timedelta(minutes=5)
PAYMENT_SESSION_STORAGE_BUFFER = timedelta(minutes=10)
PAYMENT_SESSION_FINALIZED_RETENTION = timedelta(minutes=2)
PAYMENT_SESSION_MIN_ALARM_DELAY = timedelta(seconds=1)

PAYMENT_SESSION_STATUSES = ("pending", "processing", "paid", "expired")
TERMINAL_SESSION_STATUSES = frozenset({"paid", "expired"})

# Порядок статусов: переходы только вперёд
SESSION_STATUS_RANK = {
    "pending": 0,
    "processing": 1,
    "paid": 2,
    "expired": 2,
}

# Статусы подписок
SUBSCRIPTION_ACTIVE = "active"
SUBSCRIPTION_EXPIRED = "expired"
SUBSCRIPTION_CANCELLED = "cancelled"

# Внешние вызовы
RPC_TIMEOUT_SECONDS = 15
JWKS_TIMEOUT_SECONDS = 10
JWKS_MIN_REFRESH_INTERVAL_SECONDS = 60
RECEIPT_SUCCESS_STATUS = "0x1"

DEFAULT_PRIVY_ISSUER = "privy.io"
PRIVY_JWKS_URL_TEMPLATE = "https://auth.privy.io/api/v1/apps/{app_id}/jwks.json"

DEFAULT_TOKEN_SYMBOL = "TOKEN"
