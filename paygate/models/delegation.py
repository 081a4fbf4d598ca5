from typing import Optional, TypedDict


class DelegationRecord(TypedDict):
    """Делегирование, разрешающее агенту списывать платежи от имени смарт-аккаунта"""
    id: str
    user_wallet_address: Optional[str]
    user_smart_account: str
    subscription_manager_address: str
    delegation_data: str  # JSON строкой, как подписал кошелёк
    is_active: bool
    created_at: int
    cancelled_at: Optional[int]
