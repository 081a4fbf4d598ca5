"""Репозиторий делегирований"""
import asyncpg
from typing import Optional

from paygate.models.delegation import DelegationRecord

_COLUMNS = """
    id, user_wallet_address, user_smart_account, subscription_manager_address,
    delegation_data, is_active, created_at, cancelled_at
"""


class DelegationRepository:
    """Одна запись на пару (смарт-аккаунт, контракт). Записи не удаляются."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get(
        self,
        user_smart_account: str,
        subscription_manager_address: str,
        active_only: bool = False
    ) -> Optional[DelegationRecord]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_COLUMNS}
                FROM user_delegations
                WHERE lower(user_smart_account) = lower($1)
                  AND lower(subscription_manager_address) = lower($2)
                  AND (is_active OR NOT $3)
                LIMIT 1
                """,
                user_smart_account, subscription_manager_address, active_only
            )
            return dict(row) if row else None  # type: ignore

    async def create_delegation(
        self,
        user_wallet_address: Optional[str],
        user_smart_account: str,
        subscription_manager_address: str,
        delegation_data: str,
        created_at: int
    ) -> DelegationRecord:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO user_delegations (
                    user_wallet_address, user_smart_account, subscription_manager_address,
                    delegation_data, is_active, created_at
                )
                VALUES ($1, $2, $3, $4, TRUE, $5)
                ON CONFLICT (user_smart_account, subscription_manager_address)
                DO UPDATE SET delegation_data = $4, is_active = TRUE, cancelled_at = NULL
                RETURNING {_COLUMNS}
                """,
                user_wallet_address, user_smart_account, subscription_manager_address,
                delegation_data, created_at
            )
            return dict(row)  # type: ignore

    async def replace_payload(self, delegation_id: str, delegation_data: str) -> None:
        """Перезаписать делегирование на месте и снова сделать его активным"""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE user_delegations
                SET delegation_data = $2, is_active = TRUE, cancelled_at = NULL
                WHERE id = $1
                """,
                delegation_id, delegation_data
            )

    async def deactivate(self, delegation_id: str, cancelled_at: int) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE user_delegations
                SET is_active = FALSE, cancelled_at = $2
                WHERE id = $1
                """,
                delegation_id, cancelled_at
            )
