"""Аутентификация запросов: API-ключ разработчика или bearer-токен пользователя"""
import logging
from dataclasses import dataclass
from typing import Optional

from paygate.clients.jwks import TokenVerifier
from paygate.db.repositories.developers import DeveloperRepository
from paygate.exceptions import AuthError, ValidationError
from paygate.utils.claims import extract_email

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class Caller:
    """Кто вызывает сервис"""
    kind: str  # api_key, bearer, anonymous
    email: Optional[str] = None
    developer_id: Optional[str] = None
    api_key_id: Optional[str] = None

    @property
    def is_api_key(self) -> bool:
        return self.kind == "api_key"

    @property
    def is_bearer(self) -> bool:
        return self.kind == "bearer"


ANONYMOUS = Caller(kind="anonymous")


class Authenticator:
    """
    Два взаимоисключающих пути доверия

    API-ключ: прямой поиск активного ключа в таблице, без nonce и timestamp.
    Bearer: JWT провайдера, проверенный по опубликованным ключам; личность
    извлекается из claim'ов.
    """

    def __init__(self, developers: DeveloperRepository, tokens: TokenVerifier):
        self.developers = developers
        self.tokens = tokens

    async def authenticate_api_key(self, api_key: str) -> Caller:
        record = await self.developers.find_active_api_key(api_key)
        if not record:
            logger.warning("🚫 Неверный API-ключ")
            raise AuthError("Invalid API key", code="invalid_api_key")
        return Caller(kind="api_key", developer_id=record["developer_id"], api_key_id=record["id"])

    async def authenticate_bearer(self, authorization: Optional[str]) -> Caller:
        if not authorization or not authorization.startswith(BEARER_PREFIX):
            raise AuthError("Missing or invalid Authorization header", code="missing_credentials")

        token = authorization[len(BEARER_PREFIX):].strip()
        claims = await self.tokens.verify(token)

        email = extract_email(claims)
        if not email:
            raise ValidationError("Unable to extract email from JWT", code="email_not_in_token")

        developer_id = None
        try:
            developer = await self.developers.get_by_email(email)
            if developer:
                developer_id = developer["id"]
        except Exception as e:
            logger.warning(f"Не удалось получить данные разработчика для {email}: {e}")

        return Caller(kind="bearer", email=email, developer_id=developer_id)

    async def authenticate(
        self,
        api_key: Optional[str],
        authorization: Optional[str],
        optional: bool = False
    ) -> Caller:
        """
        Определяет вызывающего

        Args:
            api_key: Значение X-Api-Key, если есть
            authorization: Заголовок Authorization, если есть
            optional: Разрешить анонимный вызов (публичные эндпоинты)
        """
        if api_key:
            return await self.authenticate_api_key(api_key)
        if optional and not authorization:
            return ANONYMOUS
        return await self.authenticate_bearer(authorization)
