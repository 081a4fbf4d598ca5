"""Модели для платежей, планов и пользователей"""
from typing import TypedDict, Optional


class PaymentRecord(TypedDict):
    """Запись платежа из базы данных"""
    id: str
    subscription_id: str
    user_id: str
    developer_id: Optional[str]
    amount: float
    token_address: str
    token_symbol: str
    tx_hash: str  # уникален
    payment_date: int


class PlanDetails(TypedDict):
    """План подписки вместе с настройками проекта"""
    id: str
    name: str
    description: Optional[str]
    price: float
    period_seconds: int
    contract_plan_id: int
    developer_id: Optional[str]
    company_name: Optional[str]
    project_id: str
    subscription_manager_address: Optional[str]
    token_address: Optional[str]
    token_symbol: Optional[str]


class UserRecord(TypedDict):
    """Пользователь платформы"""
    id: str
    email: str
    wallet_address: Optional[str]
    smart_account_address: Optional[str]


class SupportedToken(TypedDict):
    id: str
    name: str
    symbol: str
    token_address: str
    image_url: Optional[str]
