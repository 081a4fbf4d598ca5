import os
import logging
from typing import Optional
from pydantic import BaseModel, Field, field_validator
from dotenv import load_dotenv

from paygate.constants import DEFAULT_PRIVY_ISSUER, PRIVY_JWKS_URL_TEMPLATE

# Загружаем переменные из .env файла (для локального запуска)
load_dotenv()


class Config(BaseModel):
    """Конфигурация сервиса с валидацией"""

    database_url: str = Field(..., description="PostgreSQL connection URL")
    privy_app_id: str = Field(..., description="Privy application id (JWT audience)")
    rpc_url: str = Field(..., description="JSON-RPC endpoint for receipt lookups")

    privy_jwks_url: Optional[str] = Field(default=None, description="JWKS URL, derived from app id if empty")
    privy_issuer: str = Field(default=DEFAULT_PRIVY_ISSUER, description="Expected JWT issuer")
    jwt_algorithms: list[str] = Field(default=["ES256"], description="Accepted JWT signing algorithms")

    host: str = Field(default="0.0.0.0", description="HTTP bind host")
    port: int = Field(default=8080, description="HTTP bind port")
    cors_allow_origin: str = Field(default="*", description="Access-Control-Allow-Origin value")

    nonce_backend: str = Field(default="memory", description="memory | postgres")
    persist_sessions: bool = Field(default=True, description="Write-through payment session snapshots")

    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator('jwt_algorithms', mode='before')
    @classmethod
    def parse_algorithms(cls, v):
        """Парсит JWT_ALGORITHMS из строки в список"""
        if isinstance(v, str):
            return [alg.strip() for alg in v.split(",") if alg.strip()]
        return v

    @field_validator('nonce_backend')
    @classmethod
    def check_nonce_backend(cls, v: str) -> str:
        if v not in ("memory", "postgres"):
            raise ValueError("NONCE_BACKEND должен быть memory или postgres")
        return v

    @property
    def jwks_url(self) -> str:
        return self.privy_jwks_url or PRIVY_JWKS_URL_TEMPLATE.format(app_id=self.privy_app_id)

    @classmethod
    def from_env(cls) -> "Config":
        """Создает конфиг из переменных окружения с валидацией"""
        db_url = os.getenv("DATABASE_URL")
        app_id = os.getenv("PRIVY_APP_ID")
        rpc_url = os.getenv("RPC_URL")

        if not db_url:
            raise ValueError("DATABASE_URL не установлен")
        if not app_id:
            raise ValueError("PRIVY_APP_ID не установлен. Укажите id приложения Privy")
        if not rpc_url:
            raise ValueError("RPC_URL не установлен. Укажите JSON-RPC endpoint сети")

        return cls(
            database_url=db_url,
            privy_app_id=app_id,
            rpc_url=rpc_url,
            privy_jwks_url=os.getenv("PRIVY_JWKS_URL") or None,
            privy_issuer=os.getenv("PRIVY_ISSUER", DEFAULT_PRIVY_ISSUER),
            jwt_algorithms=cls.parse_algorithms(os.getenv("JWT_ALGORITHMS", "ES256")),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8080")),
            cors_allow_origin=os.getenv("CORS_ALLOW_ORIGIN", "*"),
            nonce_backend=os.getenv("NONCE_BACKEND", "memory").lower(),
            persist_sessions=os.getenv("PERSIST_SESSIONS", "True").lower() == "true",
            log_level=os.getenv("LOG_LEVEL", "INFO")
        )


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Настраивает логирование для приложения"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    return logging.getLogger("paygate")
