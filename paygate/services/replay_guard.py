"""
Защита от повторного воспроизведения подписанных запросов.

Каждый мутирующий запрос несёт timestamp (мс) и одноразовый nonce.
Timestamp должен попадать в окно ±60 с, nonce занимается ровно один раз
на 120 с. Любая неудача прерывает запрос до побочных эффектов.
"""
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Protocol

from paygate.constants import NONCE_TTL, REQUEST_ACCEPT_WINDOW
from paygate.db.repositories.nonces import NonceRepository
from paygate.exceptions import ReplayError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class NonceRegistry(Protocol):
    async def check(self, nonce: str) -> bool: ...

    async def reserve(self, nonce: str) -> bool: ...

    async def purge_expired(self) -> int: ...


class MemoryNonceRegistry:
    """
    Реестр nonce в памяти процесса

    Между чтением и записью в reserve нет await, поэтому на одном event loop
    проверка и запись атомарны.
    """

    def __init__(self, ttl: timedelta = NONCE_TTL, clock: Clock = time.time):
        self.ttl = ttl.total_seconds()
        self.clock = clock
        self._reserved: dict[str, float] = {}

    def _is_live(self, nonce: str, now: float) -> bool:
        reserved_at = self._reserved.get(nonce)
        return reserved_at is not None and now - reserved_at < self.ttl

    async def check(self, nonce: str) -> bool:
        return self._is_live(nonce, self.clock())

    async def reserve(self, nonce: str) -> bool:
        now = self.clock()
        if self._is_live(nonce, now):
            return False
        self._reserved[nonce] = now
        return True

    async def purge_expired(self) -> int:
        now = self.clock()
        expired = [nonce for nonce, at in self._reserved.items() if now - at >= self.ttl]
        for nonce in expired:
            del self._reserved[nonce]
        return len(expired)

    def __len__(self) -> int:
        return len(self._reserved)


class PostgresNonceRegistry:
    """Реестр nonce в PostgreSQL, общий для всех экземпляров сервиса"""

    def __init__(self, repo: NonceRepository, ttl: timedelta = NONCE_TTL, clock: Clock = time.time):
        self.repo = repo
        self.ttl = ttl
        self.clock = clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc)

    async def check(self, nonce: str) -> bool:
        return await self.repo.exists(nonce, self._now() - self.ttl)

    async def reserve(self, nonce: str) -> bool:
        now = self._now()
        return await self.repo.reserve(nonce, now, now - self.ttl)

    async def purge_expired(self) -> int:
        return await self.repo.delete_expired(self._now() - self.ttl)


def _parse_timestamp(raw: Any) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return int(raw)
    if isinstance(raw, str):
        try:
            return int(raw.strip())
        except ValueError:
            return None
    return None


class ReplayGuard:
    """Проверка свежести timestamp и одноразовости nonce"""

    def __init__(
        self,
        registry: NonceRegistry,
        window: timedelta = REQUEST_ACCEPT_WINDOW,
        clock: Clock = time.time
    ):
        self.registry = registry
        self.window_ms = int(window.total_seconds() * 1000)
        self.clock = clock

    async def check(self, nonce: str) -> bool:
        return await self.registry.check(nonce)

    async def reserve(self, nonce: str) -> bool:
        return await self.registry.reserve(nonce)

    async def enforce(self, timestamp: Any, nonce: Any, required: bool = True) -> None:
        """
        Проверяет timestamp и занимает nonce

        Args:
            timestamp: Время запроса клиента в миллисекундах
            nonce: Одноразовый токен запроса
            required: Для мутирующих запросов оба поля обязательны

        Raises:
            ReplayError: 400 при устаревшем/некорректном timestamp, 409 при повторе
        """
        if required and (timestamp is None or nonce in (None, "")):
            raise ReplayError("Missing timestamp or nonce", code="missing_replay_fields")

        if timestamp is not None:
            ts = _parse_timestamp(timestamp)
            now_ms = int(self.clock() * 1000)
            if ts is None or abs(now_ms - ts) > self.window_ms:
                raise ReplayError("Request expired", code="request_expired")

        if nonce in (None, ""):
            return

        nonce = str(nonce)
        if await self.registry.check(nonce):
            logger.warning(f"🔁 Повторный nonce отклонён: {nonce[:16]}")
            raise ReplayError("Duplicate request detected", code="duplicate_request", status=409)

        if not await self.registry.reserve(nonce):
            logger.warning(f"🔁 Nonce занят параллельным запросом: {nonce[:16]}")
            raise ReplayError("Duplicate request detected", code="duplicate_request", status=409)
