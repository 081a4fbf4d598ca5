"""Репозиторий пользователей"""
import asyncpg
from typing import Optional

from paygate.models.payment import UserRecord


class UserRepository:

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get_by_email(self, email: str) -> Optional[UserRecord]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, email, wallet_address, smart_account_address
                FROM users
                WHERE email = $1
                """,
                email
            )
            return dict(row) if row else None  # type: ignore

    async def create_user(
        self,
        email: str,
        wallet_address: Optional[str],
        smart_account_address: Optional[str] = None
    ) -> UserRecord:
        """Создать пользователя; если email уже есть, обновить адреса"""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO users (email, wallet_address, smart_account_address)
                VALUES ($1, $2, $3)
                ON CONFLICT (email)
                DO UPDATE SET wallet_address = COALESCE($2, users.wallet_address),
                              smart_account_address = COALESCE($3, users.smart_account_address)
                RETURNING id, email, wallet_address, smart_account_address
                """,
                email, wallet_address, smart_account_address or ""
            )
            return dict(row)  # type: ignore
