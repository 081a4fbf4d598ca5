from typing import Optional, TypedDict


class SubscriptionRecord(TypedDict):
    """Запись подписки из базы данных (даты в секундах epoch)"""
    id: str
    user_id: str
    plan_id: str
    developer_id: str
    status: str  # active, expired, cancelled
    start_date: int
    last_payment_date: int
    next_payment_date: int
    cancelled_at: Optional[int]
    cancellation_effective_at: Optional[int]
    subscription_manager_address: str


class UserSubscriptionRow(SubscriptionRecord):
    """Подписка пользователя вместе с данными плана, проекта и токена"""
    plan_name: Optional[str]
    price: Optional[float]
    company_name: Optional[str]
    project_manager_address: Optional[str]
    token_symbol: Optional[str]
    token_address: Optional[str]


class SubscriptionView(TypedDict):
    """Подписка для отображения клиенту, статус вычислен при чтении"""
    subscription_id: str
    plan_id: str
    plan_name: Optional[str]
    company_name: Optional[str]
    status: str
    start_date: int
    next_payment_date: Optional[int]
    last_payment_date: Optional[int]
    cancelled_at: Optional[int]
    cancellation_effective_at: Optional[int]
    price: float
    subscription_manager_address: Optional[str]
    token_symbol: Optional[str]
    token_address: Optional[str]
    is_latest: bool
