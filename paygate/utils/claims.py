"""
Извлечение email из claim'ов JWT провайдера идентификации.

Email может лежать в разных местах: строкой в `email`, объектом
`email.address`, внутри `google`, или в `linked_accounts`, который провайдер
иногда присылает JSON-строкой. Формы перебираются по порядку, первая
подходящая побеждает.
"""
import json
import logging
from typing import Any, Callable, Iterable, Optional

logger = logging.getLogger(__name__)

ClaimExtractor = Callable[[dict[str, Any]], Optional[str]]


def _clean(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _direct_email(claims: dict[str, Any]) -> Optional[str]:
    return _clean(claims.get("email"))


def _email_object(claims: dict[str, Any]) -> Optional[str]:
    email = claims.get("email")
    if isinstance(email, dict):
        return _clean(email.get("address"))
    return None


def _google_email(claims: dict[str, Any]) -> Optional[str]:
    google = claims.get("google")
    if isinstance(google, dict):
        return _clean(google.get("email"))
    return None


def _linked_accounts(claims: dict[str, Any]) -> list[dict[str, Any]]:
    """linked_accounts списком или JSON-строкой; всё остальное считаем отсутствием"""
    raw = claims.get("linked_accounts")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.debug("linked_accounts не является корректным JSON")
            return []
    if not isinstance(raw, list):
        return []
    return [account for account in raw if isinstance(account, dict)]


def _linked_email_account(claims: dict[str, Any]) -> Optional[str]:
    for account in _linked_accounts(claims):
        if account.get("type") == "email":
            address = _clean(account.get("address"))
            if address:
                return address
    return None


def _linked_google_account(claims: dict[str, Any]) -> Optional[str]:
    for account in _linked_accounts(claims):
        if account.get("type") == "google_oauth":
            email = _clean(account.get("email"))
            if email:
                return email
    return None


EMAIL_EXTRACTORS: tuple[ClaimExtractor, ...] = (
    _direct_email,
    _email_object,
    _google_email,
    _linked_email_account,
    _linked_google_account,
)


def extract_email(claims: Optional[dict[str, Any]], extractors: Iterable[ClaimExtractor] = EMAIL_EXTRACTORS) -> Optional[str]:
    """Возвращает первый найденный email или None"""
    if not claims:
        return None
    for extractor in extractors:
        email = extractor(claims)
        if email:
            return email
    return None
