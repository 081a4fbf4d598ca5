"""Модель платёжной сессии (все времена в миллисекундах epoch)"""
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PaymentSession(BaseModel):
    """Короткоживущая сессия одной попытки оплаты"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    payment_id: str
    status: str = "pending"  # pending, processing, paid, expired
    created_at: Optional[int] = None
    updated_at: Optional[int] = None
    expires_at: Optional[int] = None  # фиксируется при создании
    paid_at: Optional[int] = None

    user_email: Optional[str] = None
    project_id: Optional[str] = None
    plan_id: Optional[str] = None
    contract_plan_id: Optional[int] = None
    plan_name: Optional[str] = None
    company_name: Optional[str] = None
    plan_description: Optional[str] = None

    amount: float = 0
    billing_interval_seconds: Optional[int] = None
    billing_interval_text: Optional[str] = None
    token_address: Optional[str] = None
    token_symbol: Optional[str] = None

    user_wallet_address: Optional[str] = None
    user_smart_account_address: Optional[str] = None

    metadata: dict[str, Any] = Field(default_factory=dict)
    tx_hash: Optional[str] = None


# Поля, которые никогда не уходят клиенту
INTERNAL_SESSION_FIELDS = frozenset({
    "user_email",
    "project_id",
    "user_wallet_address",
    "user_smart_account_address",
})
INTERNAL_METADATA_KEYS = frozenset({"delegation_data"})


def sanitize_session(session: Optional[PaymentSession]) -> Optional[dict[str, Any]]:
    """Готовит сессию для клиента: убирает email, внутренние id и сырые делегирования"""
    if session is None:
        return None
    data = session.model_dump(by_alias=True, exclude=set(INTERNAL_SESSION_FIELDS))
    data["metadata"] = {
        key: value
        for key, value in (session.metadata or {}).items()
        if key not in INTERNAL_METADATA_KEYS
    }
    return data
