"""Клиент публичных ключей провайдера идентификации и проверка JWT"""
import asyncio
import logging
import time
from typing import Any, Callable, Optional

import aiohttp
from jose import jwt
from jose.exceptions import JOSEError

from paygate.constants import JWKS_MIN_REFRESH_INTERVAL_SECONDS, JWKS_TIMEOUT_SECONDS
from paygate.exceptions import AuthError, UpstreamError

logger = logging.getLogger(__name__)


class JwksClient:
    """
    Загружает JWKS один раз и держит в памяти

    Принудительное обновление - не чаще раза в min_refresh_interval секунд.
    """

    def __init__(
        self,
        http: aiohttp.ClientSession,
        jwks_url: str,
        min_refresh_interval: float = JWKS_MIN_REFRESH_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        self.http = http
        self.jwks_url = jwks_url
        self.min_refresh_interval = min_refresh_interval
        self.clock = clock
        self._keys: Optional[dict[str, Any]] = None
        self._fetched_at = 0.0
        self._lock = asyncio.Lock()

    def _is_fresh(self, refresh: bool) -> bool:
        if self._keys is None:
            return False
        if not refresh:
            return True
        return self.clock() - self._fetched_at < self.min_refresh_interval

    async def get_keys(self, refresh: bool = False) -> dict[str, Any]:
        if self._is_fresh(refresh):
            return self._keys
        async with self._lock:
            if self._is_fresh(refresh):
                return self._keys
            try:
                async with self.http.get(
                    self.jwks_url,
                    timeout=aiohttp.ClientTimeout(total=JWKS_TIMEOUT_SECONDS)
                ) as response:
                    response.raise_for_status()
                    data = await response.json(content_type=None)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.error(f"Не удалось загрузить JWKS {self.jwks_url}: {e}")
                raise UpstreamError("Signing keys unavailable", code="jwks_unavailable") from e

            if not isinstance(data, dict) or not isinstance(data.get("keys"), list):
                raise UpstreamError("Malformed JWKS document", code="jwks_unavailable")

            self._keys = data
            self._fetched_at = self.clock()
            logger.info(f"🔑 Загружено ключей подписи: {len(data['keys'])}")
            return self._keys

    @staticmethod
    def has_kid(keys: dict[str, Any], kid: Optional[str]) -> bool:
        if not kid:
            return True
        return any(key.get("kid") == kid for key in keys.get("keys", []))


class TokenVerifier:
    """Проверяет подпись, срок действия, issuer и audience токена"""

    def __init__(self, jwks: JwksClient, audience: str, issuer: str, algorithms: list[str]):
        self.jwks = jwks
        self.audience = audience
        self.issuer = issuer
        self.algorithms = algorithms

    async def verify(self, token: str) -> dict[str, Any]:
        try:
            header = jwt.get_unverified_header(token)
        except JOSEError as e:
            raise AuthError("Invalid or expired JWT", code="invalid_token") from e

        keys = await self.jwks.get_keys()
        if not self.jwks.has_kid(keys, header.get("kid")):
            # ключи могли смениться после ротации
            keys = await self.jwks.get_keys(refresh=True)

        try:
            return jwt.decode(
                token,
                keys,
                algorithms=self.algorithms,
                audience=self.audience,
                issuer=self.issuer,
            )
        except JOSEError as e:
            logger.warning(f"JWT не прошёл проверку: {e}")
            raise AuthError("Invalid or expired JWT", code="invalid_token") from e
